#!/usr/bin/env python3
#
# easyacme/api/acme_accounts.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""ACME account API routes."""

from __future__ import annotations

import logging
import sqlite3
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request

from ..db import sqlite_accounts
from ..models.acme import AccountCreate
from ..services import accounts as account_service
from ..services.context import ServiceContext
from ..utils.deps import get_conn, get_context
from ..utils.rate_limit import RATE_LIMIT_REGISTER, limiter
from .auth import require_permission
from .response import ok_response, page_response

_log = logging.getLogger(__name__)

router = APIRouter(tags=["acme-accounts"])


@router.post("", status_code=201)
@limiter.limit(RATE_LIMIT_REGISTER)
async def register_account(
	request: Request,
	payload: AccountCreate,
	conn: sqlite3.Connection = Depends(get_conn),
	ctx: ServiceContext = Depends(get_context),
	_: sqlite3.Row = Depends(require_permission("acme:account:create")),
):
	"""Generate a key and register a new account with the CA."""
	row = await account_service.register_account(
		conn,
		ctx,
		name=payload.name,
		key_type=payload.key_type,
		server=payload.server,
		email=str(payload.email),
		eab_kid=payload.eab_kid,
		eab_hmac_key=payload.eab_hmac_key,
	)
	return ok_response(data=account_service.account_to_dict(row), message="Account registered")


@router.get("")
def list_accounts(
	page: int = Query(1, ge=1),
	page_size: int = Query(20, ge=1, le=200),
	name: Optional[str] = Query(None, max_length=128),
	status: Optional[Literal["valid", "deactivated", "revoked"]] = None,
	bind_eab: Optional[bool] = None,
	conn: sqlite3.Connection = Depends(get_conn),
	_: sqlite3.Row = Depends(require_permission("acme:account:read")),
):
	rows, total = sqlite_accounts.list_accounts(
		conn, page=page, page_size=page_size, name=name, status=status, bind_eab=bind_eab,
	)
	return page_response(
		[account_service.account_to_dict(r) for r in rows], total=total, page=page, page_size=page_size,
	)


@router.get("/{account_id}")
def get_account(
	account_id: int,
	conn: sqlite3.Connection = Depends(get_conn),
	_: sqlite3.Row = Depends(require_permission("acme:account:read")),
):
	row = account_service.get_account_or_404(conn, account_id)
	return ok_response(data=account_service.account_to_dict(row))


@router.delete("/{account_id}")
def delete_account(
	account_id: int,
	conn: sqlite3.Connection = Depends(get_conn),
	ctx: ServiceContext = Depends(get_context),
	_: sqlite3.Row = Depends(require_permission("acme:account:delete")),
):
	"""Delete an account that has no certificates left."""
	account_service.delete_account(conn, ctx, account_id)
	return ok_response(message="Account deleted")


@router.post("/{account_id}/deactivate")
async def deactivate_account(
	account_id: int,
	conn: sqlite3.Connection = Depends(get_conn),
	ctx: ServiceContext = Depends(get_context),
	_: sqlite3.Row = Depends(require_permission("acme:account:manage")),
):
	"""Deactivate the account at the CA. Issued certificates stay valid."""
	row = await account_service.deactivate_account(conn, ctx, account_id)
	return ok_response(data=account_service.account_to_dict(row), message="Account deactivated")
