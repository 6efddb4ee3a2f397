#!/usr/bin/env python3
#
# easyacme/models/auth.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""API token models."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

# Every permission a token can carry; "*" grants all of them
PERMISSIONS = (
	"acme:account:create",
	"acme:account:read",
	"acme:account:delete",
	"acme:account:manage",
	"acme:cert:read",
	"acme:cert:delete",
	"acme:cert:auth",
	"acme:cert:manage",
	"acme:cert:private_key:read",
	"dns:provider:create",
	"dns:provider:read",
	"dns:provider:update",
	"dns:provider:delete",
	"dns:provider:secret:read",
	"dashboard:stats",
)


class TokenCreate(BaseModel):
	name: str = Field(..., min_length=1, max_length=128)
	permissions: list[str] = Field(..., min_length=1)

	@field_validator("permissions")
	@classmethod
	def validate_permissions(cls, v: list[str]) -> list[str]:
		unknown = sorted({p for p in v if p != "*" and p not in PERMISSIONS})
		if unknown:
			raise ValueError(f"Unknown permission(s): {', '.join(unknown)}")
		return sorted(set(v))
