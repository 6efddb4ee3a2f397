#!/usr/bin/env python3
#
# easyacme/models/acme.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""ACME account, order and certificate request models."""

from __future__ import annotations

from typing import Literal, Optional, Union

from pydantic import BaseModel, EmailStr, Field, field_validator

from ..utils.config import LETSENCRYPT_PRODUCTION

KeyType = Literal["P256", "P384", "2048", "3072", "4096", "8192"]
Mode = Literal["manual", "auto"]


def _strip_domains(v: list[str]) -> list[str]:
	# Blank entries are kept so normalization rejects them as invalid domains
	return [d.strip() for d in v]


class AccountCreate(BaseModel):
	"""Account registration payload."""
	name: str = Field(..., min_length=1, max_length=128)
	key_type: KeyType = "P256"
	server: str = Field(LETSENCRYPT_PRODUCTION, min_length=8, max_length=512)
	email: EmailStr
	eab_kid: Optional[str] = Field(None, max_length=512)
	eab_hmac_key: Optional[str] = Field(None, max_length=512)

	@field_validator("name")
	@classmethod
	def strip_name(cls, v: str) -> str:
		v = v.strip()
		if not v:
			raise ValueError("Name must not be blank")
		return v

	@field_validator("server")
	@classmethod
	def validate_server(cls, v: str) -> str:
		v = v.strip()
		if not v.startswith("https://"):
			raise ValueError("ACME directory URL must use https")
		return v

	@field_validator("eab_kid", "eab_hmac_key")
	@classmethod
	def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
		if v is None:
			return None
		return v.strip() or None


class OrderCreate(BaseModel):
	"""``POST /acme/auth`` payload."""
	account_id: int = Field(..., ge=1)
	domains: list[str] = Field(..., min_length=1, max_length=100)
	key_type: KeyType = "P256"

	@field_validator("domains")
	@classmethod
	def strip_domains(cls, v: list[str]) -> list[str]:
		return _strip_domains(v)


class CertificateIssue(BaseModel):
	"""``POST /acme/auth/cert`` payload.

	``dns_provider_id`` stays loosely typed so an empty string reaches the
	service and is rejected there with a clear message.
	"""
	session_id: Optional[str] = Field(None, max_length=128)
	account_id: int = Field(..., ge=1)
	domains: list[str] = Field(..., min_length=1, max_length=100)
	key_type: KeyType = "P256"
	mode: Optional[Mode] = None
	dns_provider_id: Optional[Union[int, str]] = None

	@field_validator("domains")
	@classmethod
	def strip_domains(cls, v: list[str]) -> list[str]:
		return _strip_domains(v)


class RevokeRequest(BaseModel):
	"""Optional RFC 5280 revocation reason code."""
	reason: Optional[Literal[0, 1, 3, 4, 5, 9]] = None
