#!/usr/bin/env python3
#
# easyacme/services/certificates.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate views, downloads, revocation, deletion and dashboard stats."""

from __future__ import annotations

import logging
import math
import sqlite3
from datetime import datetime, timedelta
from typing import Any, Optional

from ..acme import keys
from ..db import sqlite_accounts, sqlite_certs, sqlite_dns, sqlite_sessions
from ..db.sqlite_runtime import loads, transaction
from ..errors import ResourceNotFoundError, StateConflictError
from ..utils.time import ensure_utc, to_iso, utcnow
from .accounts import get_account_or_404, load_account_key
from .context import ServiceContext

_log = logging.getLogger(__name__)

NOT_ISSUED = "not_issued"
ISSUED = "issued"
EXPIRED = "expired"
REVOKED = "revoked"
CERT_STATUSES = (NOT_ISSUED, ISSUED, EXPIRED, REVOKED)

# RFC 5280 CRLReason codes accepted by ACME revokeCert
REVOCATION_REASONS = {0, 1, 3, 4, 5, 9}

_DAY = 86400


# ---------------------------------------------------------------------------
# Derived fields
# ---------------------------------------------------------------------------

def expires_at(issued_at: Optional[datetime], validity_days: Optional[int]) -> Optional[datetime]:
	if issued_at is None or validity_days is None:
		return None
	return ensure_utc(issued_at) + timedelta(days=validity_days)


def compute_remaining_days(
	issued_at: Optional[datetime],
	validity_days: Optional[int],
	now: Optional[datetime] = None,
) -> Optional[int]:
	"""Whole days left, rounded up and never negative. None if not issued."""
	end = expires_at(issued_at, validity_days)
	if end is None:
		return None
	now = ensure_utc(now) if now is not None else utcnow()
	remaining = math.ceil((end - now).total_seconds() / _DAY)
	return max(0, remaining)


def display_status(row: sqlite3.Row, now: Optional[datetime] = None) -> str:
	status = row["cert_status"]
	if status == ISSUED:
		end = expires_at(row["issued_at"], row["validity_days"])
		if end is not None and end <= (now or utcnow()):
			return EXPIRED
	return status


def _filename_stem(row: sqlite3.Row) -> str:
	domains = loads(row["domains"], [])
	first = domains[0] if domains else f"certificate-{row['id']}"
	return first.replace("*", "_")


def certificate_to_dict(row: sqlite3.Row, now: Optional[datetime] = None, *, detail: bool = False) -> dict[str, Any]:
	"""API view of a certificate. Private key material is never included."""
	now = now or utcnow()
	status = row["cert_status"]
	data: dict[str, Any] = {
		"id": row["id"],
		"domains": loads(row["domains"], []),
		"key_type": row["key_type"],
		"account_id": row["account_id"],
		"dns_provider_id": row["dns_provider_id"],
		"cert_type": row["cert_type"],
		"cert_status": display_status(row, now),
		"issued_at": to_iso(row["issued_at"]),
		"expires_at": to_iso(expires_at(row["issued_at"], row["validity_days"])),
		"validity_days": row["validity_days"],
		"remaining_days": None if status == NOT_ISSUED else compute_remaining_days(
			row["issued_at"], row["validity_days"], now,
		),
		"cert_url": row["cert_url"],
		"cert_stable_url": row["cert_stable_url"],
		"version": row["version"],
		"created_at": to_iso(row["created_at"]),
		"updated_at": to_iso(row["updated_at"]),
	}
	if detail:
		data["certificate"] = row["certificate"]
		data["issuer_certificate"] = row["issuer_certificate"]
		data["csr"] = row["csr"]
	return data


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_cert_or_404(conn: sqlite3.Connection, cert_id: int) -> sqlite3.Row:
	row = sqlite_certs.get_cert(conn, cert_id)
	if row is None:
		raise ResourceNotFoundError(f"Certificate {cert_id} not found")
	return row


def get_chain(conn: sqlite3.Connection, cert_id: int) -> tuple[str, str]:
	"""Return ``(filename, pem_chain)``."""
	row = get_cert_or_404(conn, cert_id)
	if not row["certificate"]:
		raise StateConflictError(f"Certificate {cert_id} has not been issued")
	return f"{_filename_stem(row)}_chain.pem", row["certificate"]


def get_private_key(conn: sqlite3.Connection, ctx: ServiceContext, cert_id: int) -> tuple[str, str]:
	"""Return ``(filename, pem_key)``. Callers gate this behind its own permission."""
	row = get_cert_or_404(conn, cert_id)
	if not row["private_key_ref"]:
		raise StateConflictError(f"Certificate {cert_id} has no private key")
	pem = ctx.secret_store(conn).get(row["private_key_ref"])
	_log.info("CERT_PRIVATE_KEY_READ id=%s", cert_id)
	return f"{_filename_stem(row)}_private.pem", pem


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

async def revoke_certificate(
	conn: sqlite3.Connection,
	ctx: ServiceContext,
	cert_id: int,
	reason: Optional[int] = None,
) -> sqlite3.Row:
	"""Revoke an issued certificate at the CA, then mark it revoked."""
	row = get_cert_or_404(conn, cert_id)
	if display_status(row) != ISSUED:
		raise StateConflictError(
			f"Certificate {cert_id} is {display_status(row)}; only issued certificates can be revoked",
		)
	account = get_account_or_404(conn, row["account_id"])
	account_key = load_account_key(ctx, conn, account)
	async with ctx.acme_client(account["server"], account_key, account_url=account["uri"]) as client:
		await client.revoke(keys.leaf_der(row["certificate"]), reason)

	if not sqlite_certs.set_cert_status(
		conn, cert_id, REVOKED, expected_status=ISSUED, expected_version=row["version"],
	):
		raise StateConflictError(f"Certificate {cert_id} was modified concurrently")
	_log.info("CERT_REVOKED id=%s reason=%s", cert_id, reason)
	return sqlite_certs.get_cert(conn, cert_id)


def delete_certificate(conn: sqlite3.Connection, ctx: ServiceContext, cert_id: int) -> None:
	store = ctx.secret_store(conn)
	with transaction(conn, immediate=True):
		row = get_cert_or_404(conn, cert_id)
		if sqlite_sessions.count_active_sessions_for_cert(conn, cert_id):
			raise StateConflictError(f"Certificate {cert_id} is being issued right now")
		sqlite_certs.delete_cert(conn, cert_id)
		store.delete(row["private_key_ref"])
	_log.info("CERT_DELETED id=%s", cert_id)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

def _month_keys(now: datetime, months: int) -> list[str]:
	keys_: list[str] = []
	year, month = now.year, now.month
	for _ in range(months):
		keys_.append(f"{year:04d}-{month:02d}")
		month -= 1
		if month == 0:
			year, month = year - 1, 12
	return list(reversed(keys_))


def dashboard_stats(conn: sqlite3.Connection, now: Optional[datetime] = None, months: int = 6) -> dict[str, Any]:
	now = now or utcnow()
	by_status = sqlite_certs.count_certs_by_status(conn)
	# Issued rows past their validity that the sweep has not caught yet
	lapsed = sqlite_certs.count_expired_issued(conn, now)

	month_keys = _month_keys(now, months)
	since = datetime(int(month_keys[0][:4]), int(month_keys[0][5:]), 1, tzinfo=now.tzinfo)
	monthly = sqlite_certs.monthly_issued_counts(conn, since)

	accounts = sqlite_accounts.count_accounts_by_status(conn)
	providers = sqlite_dns.count_providers_by_type(conn)
	return {
		"accounts": {
			"total": sum(accounts.values()),
			"by_status": accounts,
		},
		"certificates": {
			"total": sum(by_status.values()),
			"valid": by_status.get(ISSUED, 0) - lapsed,
			"expired": by_status.get(EXPIRED, 0) + lapsed,
			"revoked": by_status.get(REVOKED, 0),
			"not_issued": by_status.get(NOT_ISSUED, 0),
			"monthly_issued": [{"month": m, "count": monthly.get(m, 0)} for m in month_keys],
		},
		"dns_providers": {
			"total": sum(providers.values()),
			"by_type": providers,
		},
	}
