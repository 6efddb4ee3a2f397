#!/usr/bin/env python3
#
# easyacme/api/dns_providers.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""DNS provider credential routes."""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ..db import sqlite_dns
from ..models.dns import BatchDelete, DNSProviderCreate, DNSProviderUpdate, ProviderType
from ..services import dns_providers as provider_service
from ..services.context import ServiceContext
from ..utils.deps import get_conn, get_context
from ..utils.rate_limit import RATE_LIMIT_REVEAL, limiter
from .auth import require_permission
from .response import ok_response, page_response

_log = logging.getLogger(__name__)

router = APIRouter(tags=["dns-providers"])


@router.post("", status_code=201)
def create_provider(
	payload: DNSProviderCreate,
	conn: sqlite3.Connection = Depends(get_conn),
	ctx: ServiceContext = Depends(get_context),
	_: sqlite3.Row = Depends(require_permission("dns:provider:create")),
):
	row = provider_service.create_provider(
		conn,
		ctx,
		name=payload.name,
		provider_type=payload.type,
		secret_id=payload.secret_id,
		secret_key=payload.secret_key,
		notes=payload.notes,
	)
	return ok_response(data=provider_service.provider_to_dict(row), message="DNS provider created")


@router.get("")
def list_providers(
	page: int = Query(1, ge=1),
	page_size: int = Query(20, ge=1, le=200),
	name: Optional[str] = Query(None, max_length=128),
	type: Optional[ProviderType] = None,
	conn: sqlite3.Connection = Depends(get_conn),
	_: sqlite3.Row = Depends(require_permission("dns:provider:read")),
):
	rows, total = sqlite_dns.list_providers(conn, page=page, page_size=page_size, name=name, type=type)
	return page_response(
		[provider_service.provider_to_dict(r) for r in rows], total=total, page=page, page_size=page_size,
	)


# Registered before /{provider_id} so "batch-delete" is not taken for an id
@router.post("/batch-delete")
def batch_delete_providers(
	payload: BatchDelete,
	conn: sqlite3.Connection = Depends(get_conn),
	ctx: ServiceContext = Depends(get_context),
	_: sqlite3.Row = Depends(require_permission("dns:provider:delete")),
):
	"""Delete several credentials at once. Nothing is deleted if any id is unknown."""
	deleted = provider_service.delete_providers(conn, ctx, payload.ids)
	return ok_response(data={"deleted": deleted}, message=f"{deleted} DNS provider(s) deleted")


@router.get("/{provider_id}")
def get_provider(
	provider_id: int,
	conn: sqlite3.Connection = Depends(get_conn),
	_: sqlite3.Row = Depends(require_permission("dns:provider:read")),
):
	row = provider_service.get_provider_or_404(conn, provider_id)
	return ok_response(data=provider_service.provider_to_dict(row))


@router.patch("/{provider_id}")
def update_provider(
	provider_id: int,
	payload: DNSProviderUpdate,
	conn: sqlite3.Connection = Depends(get_conn),
	ctx: ServiceContext = Depends(get_context),
	_: sqlite3.Row = Depends(require_permission("dns:provider:update")),
):
	row = provider_service.update_provider(
		conn,
		ctx,
		provider_id,
		name=payload.name,
		provider_type=payload.type,
		secret_id=payload.secret_id,
		secret_key=payload.secret_key,
		notes=payload.notes,
	)
	return ok_response(data=provider_service.provider_to_dict(row), message="DNS provider updated")


@router.delete("/{provider_id}")
def delete_provider(
	provider_id: int,
	conn: sqlite3.Connection = Depends(get_conn),
	ctx: ServiceContext = Depends(get_context),
	_: sqlite3.Row = Depends(require_permission("dns:provider:delete")),
):
	provider_service.delete_providers(conn, ctx, [provider_id])
	return ok_response(message="DNS provider deleted")


@router.get("/{provider_id}/secrets")
@limiter.limit(RATE_LIMIT_REVEAL)
def reveal_secrets(
	request: Request,
	provider_id: int,
	conn: sqlite3.Connection = Depends(get_conn),
	ctx: ServiceContext = Depends(get_context),
	token: sqlite3.Row = Depends(require_permission("dns:provider:secret:read")),
):
	"""Decrypted credential pair. Every read is logged with the caller's token id."""
	secrets = provider_service.reveal_secrets(conn, ctx, provider_id)
	_log.info("DNS_PROVIDER_SECRETS_REVEALED id=%s token_id=%s", provider_id, token["id"])
	return ok_response(data=secrets)
