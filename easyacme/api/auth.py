#!/usr/bin/env python3
#
# easyacme/api/auth.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Bearer token authentication, permission checks and token routes."""

from __future__ import annotations

import logging
import sqlite3
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..db import sqlite_tokens
from ..models.auth import TokenCreate
from ..utils.crypto import new_token
from ..utils.deps import get_conn
from ..utils.time import to_iso
from .response import ok_response

_log = logging.getLogger(__name__)
_security = HTTPBearer(auto_error=False)

router = APIRouter(tags=["auth"])

WILDCARD = "*"


# ---------------------------------------------------------------------------
# Authentication Dependencies
# ---------------------------------------------------------------------------

def get_current_token(
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_security),
	conn: sqlite3.Connection = Depends(get_conn),
) -> sqlite3.Row:
	"""FastAPI dependency that enforces a valid bearer token."""
	if not credentials or not credentials.credentials:
		raise HTTPException(
			status_code=401,
			detail="Not authenticated",
			headers={"WWW-Authenticate": "Bearer"},
		)
	token = sqlite_tokens.get_token(conn, credentials.credentials)
	if token is None:
		raise HTTPException(
			status_code=401,
			detail="Invalid token",
			headers={"WWW-Authenticate": "Bearer"},
		)
	sqlite_tokens.touch_token(conn, token["id"])
	return token


def has_permission(granted: set[str], permission: str) -> bool:
	return WILDCARD in granted or permission in granted


def require_permission(permission: str) -> Callable[..., sqlite3.Row]:
	"""Dependency factory: the caller's token must carry ``permission``."""

	def _dependency(token: sqlite3.Row = Depends(get_current_token)) -> sqlite3.Row:
		if not has_permission(sqlite_tokens.token_permissions(token), permission):
			_log.info("PERMISSION_DENIED token_id=%s permission=%s", token["id"], permission)
			raise HTTPException(status_code=403, detail=f"Missing permission {permission}")
		return token

	return _dependency


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("/auth/me")
def me(token: sqlite3.Row = Depends(get_current_token)):
	"""Identity and permissions of the calling token."""
	return ok_response(data={
		"id": token["id"],
		"name": token["name"],
		"permissions": sorted(sqlite_tokens.token_permissions(token)),
		"created_at": to_iso(token["created_at"]),
	})


@router.post("/auth/tokens", status_code=201)
def create_token(
	payload: TokenCreate,
	conn: sqlite3.Connection = Depends(get_conn),
	caller: sqlite3.Row = Depends(require_permission(WILDCARD)),
):
	"""Mint a token. The plaintext is returned once and never stored."""
	token = new_token()
	token_id = sqlite_tokens.create_token(conn, payload.name, token, payload.permissions)
	_log.info("API_TOKEN_CREATED id=%s name=%s by_token_id=%s", token_id, payload.name, caller["id"])
	return ok_response(data={
		"id": token_id,
		"name": payload.name,
		"permissions": payload.permissions,
		"token": token,
	})
