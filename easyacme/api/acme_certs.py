#!/usr/bin/env python3
#
# easyacme/api/acme_certs.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Authorization sessions, issuance and certificate routes."""

from __future__ import annotations

import logging
import sqlite3
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request

from ..db import sqlite_certs
from ..models.acme import CertificateIssue, OrderCreate, RevokeRequest
from ..services import certificates as cert_service
from ..services import orders as order_service
from ..services.context import ServiceContext
from ..services.issuance import IssuanceManager
from ..utils.deps import get_conn, get_context, get_issuance
from ..utils.rate_limit import RATE_LIMIT_ISSUE, RATE_LIMIT_REVEAL, limiter
from ..utils.time import utcnow
from .auth import require_permission
from .response import ok_response, page_response, pem_download

_log = logging.getLogger(__name__)

router = APIRouter(tags=["acme-certificates"])


# ---------------------------------------------------------------------------
# Authorization sessions
# ---------------------------------------------------------------------------

@router.post("/acme/auth", status_code=201)
@limiter.limit(RATE_LIMIT_ISSUE)
async def create_authorization(
	request: Request,
	payload: OrderCreate,
	conn: sqlite3.Connection = Depends(get_conn),
	ctx: ServiceContext = Depends(get_context),
	_: sqlite3.Row = Depends(require_permission("acme:cert:auth")),
):
	"""Open an order and return the TXT records that prove domain control."""
	session = await order_service.create_order(
		conn, ctx, account_id=payload.account_id, domains=payload.domains, key_type=payload.key_type,
	)
	return ok_response(data=session, message="Publish the TXT records, then request the certificate")


@router.get("/acme/auth/{session_id}")
def get_authorization(
	session_id: str,
	conn: sqlite3.Connection = Depends(get_conn),
	_: sqlite3.Row = Depends(require_permission("acme:cert:auth")),
):
	row = order_service.get_session_or_404(conn, session_id)
	return ok_response(data=order_service.session_to_dict(row))


@router.delete("/acme/auth/{session_id}")
async def abandon_authorization(
	session_id: str,
	issuance: IssuanceManager = Depends(get_issuance),
	_: sqlite3.Row = Depends(require_permission("acme:cert:auth")),
):
	"""Abandon a session. A running flow is cancelled and its DNS records removed."""
	session = await issuance.abandon(session_id)
	return ok_response(data=session, message="Session abandoned")


@router.post("/acme/auth/cert")
@limiter.limit(RATE_LIMIT_ISSUE)
async def issue_certificate(
	request: Request,
	payload: CertificateIssue,
	conn: sqlite3.Connection = Depends(get_conn),
	issuance: IssuanceManager = Depends(get_issuance),
	_: sqlite3.Row = Depends(require_permission("acme:cert:auth")),
):
	"""Validate the session's challenges and finalize the order.

	Blocks until the certificate is issued or the flow fails.
	"""
	cert = await issuance.issue(
		conn,
		account_id=payload.account_id,
		domains=payload.domains,
		key_type=payload.key_type,
		session_id=payload.session_id,
		mode=payload.mode,
		dns_provider_id=payload.dns_provider_id,
	)
	return ok_response(data=cert, message="Certificate issued")


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------

@router.get("/acme/certificates")
def list_certificates(
	page: int = Query(1, ge=1),
	page_size: int = Query(20, ge=1, le=200),
	domain: Optional[str] = Query(None, max_length=253),
	status: Optional[Literal["not_issued", "issued", "expired", "revoked"]] = None,
	account_id: Optional[int] = Query(None, ge=1),
	conn: sqlite3.Connection = Depends(get_conn),
	_: sqlite3.Row = Depends(require_permission("acme:cert:read")),
):
	rows, total = sqlite_certs.list_certs(
		conn, page=page, page_size=page_size, domain=domain, status=status, account_id=account_id,
	)
	now = utcnow()
	return page_response(
		[cert_service.certificate_to_dict(r, now) for r in rows], total=total, page=page, page_size=page_size,
	)


@router.get("/acme/certificates/{cert_id}")
def get_certificate(
	cert_id: int,
	conn: sqlite3.Connection = Depends(get_conn),
	_: sqlite3.Row = Depends(require_permission("acme:cert:read")),
):
	row = cert_service.get_cert_or_404(conn, cert_id)
	return ok_response(data=cert_service.certificate_to_dict(row, detail=True))


@router.get("/acme/certificates/{cert_id}/chain")
def download_chain(
	cert_id: int,
	conn: sqlite3.Connection = Depends(get_conn),
	_: sqlite3.Row = Depends(require_permission("acme:cert:read")),
):
	filename, pem = cert_service.get_chain(conn, cert_id)
	return pem_download(filename, pem)


@router.get("/acme/certificates/{cert_id}/private_key")
@limiter.limit(RATE_LIMIT_REVEAL)
def download_private_key(
	request: Request,
	cert_id: int,
	conn: sqlite3.Connection = Depends(get_conn),
	ctx: ServiceContext = Depends(get_context),
	token: sqlite3.Row = Depends(require_permission("acme:cert:private_key:read")),
):
	filename, pem = cert_service.get_private_key(conn, ctx, cert_id)
	_log.info("CERT_PRIVATE_KEY_DOWNLOADED id=%s token_id=%s", cert_id, token["id"])
	return pem_download(filename, pem)


@router.get("/acme/certificates/{cert_id}/private-key-content")
@limiter.limit(RATE_LIMIT_REVEAL)
def private_key_content(
	request: Request,
	cert_id: int,
	conn: sqlite3.Connection = Depends(get_conn),
	ctx: ServiceContext = Depends(get_context),
	token: sqlite3.Row = Depends(require_permission("acme:cert:private_key:read")),
):
	"""Private key as JSON, for clients that cannot handle downloads."""
	filename, pem = cert_service.get_private_key(conn, ctx, cert_id)
	_log.info("CERT_PRIVATE_KEY_REVEALED id=%s token_id=%s", cert_id, token["id"])
	return ok_response(data={"filename": filename, "private_key": pem})


@router.post("/acme/certificates/{cert_id}/revoke")
async def revoke_certificate(
	cert_id: int,
	payload: Optional[RevokeRequest] = None,
	conn: sqlite3.Connection = Depends(get_conn),
	ctx: ServiceContext = Depends(get_context),
	_: sqlite3.Row = Depends(require_permission("acme:cert:manage")),
):
	reason = payload.reason if payload is not None else None
	row = await cert_service.revoke_certificate(conn, ctx, cert_id, reason)
	return ok_response(data=cert_service.certificate_to_dict(row), message="Certificate revoked")


@router.delete("/acme/certificates/{cert_id}")
def delete_certificate(
	cert_id: int,
	conn: sqlite3.Connection = Depends(get_conn),
	ctx: ServiceContext = Depends(get_context),
	_: sqlite3.Row = Depends(require_permission("acme:cert:delete")),
):
	"""Delete the record and its private key. The CA is not contacted."""
	cert_service.delete_certificate(conn, ctx, cert_id)
	return ok_response(message="Certificate deleted")
