#!/usr/bin/env python3
#
# easyacme/models/dns.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""DNS provider credential models."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

ProviderType = Literal["tencentcloud", "aliyun", "huaweicloud", "baiducloud", "cloudflare", "godaddy", "route53"]


class DNSProviderCreate(BaseModel):
	name: str = Field(..., min_length=1, max_length=128)
	type: ProviderType
	secret_id: str = Field(..., min_length=1, max_length=512)
	secret_key: str = Field("", max_length=4096)
	notes: str = Field("", max_length=1024)

	@field_validator("name")
	@classmethod
	def strip_name(cls, v: str) -> str:
		v = v.strip()
		if not v:
			raise ValueError("Name must not be blank")
		return v


class DNSProviderUpdate(BaseModel):
	"""Partial update. Omitted fields are left untouched."""
	name: Optional[str] = Field(None, min_length=1, max_length=128)
	type: Optional[ProviderType] = None
	secret_id: Optional[str] = Field(None, min_length=1, max_length=512)
	secret_key: Optional[str] = Field(None, max_length=4096)
	notes: Optional[str] = Field(None, max_length=1024)


class BatchDelete(BaseModel):
	ids: list[int] = Field(..., min_length=1, max_length=500)
