#!/usr/bin/env python3
#
# easyacme/db/sqlite_sessions.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Authorization session rows (the server side of the issuance wizard)."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Optional

from ..utils.time import utcnow
from .sqlite_runtime import UNSET, dumps, transaction

# Session statuses
PENDING = "pending"
PROCESSING = "processing"
VALID = "valid"
INVALID = "invalid"
ABANDONED = "abandoned"


def create_session(
	conn: sqlite3.Connection,
	*,
	session_id: str,
	account_id: int,
	cert_id: int,
	domains: list[str],
	key_type: str,
	order_url: str,
	finalize_url: str,
	authorizations: list[dict],
	expires_at: datetime,
) -> None:
	now = utcnow()
	with transaction(conn, immediate=True):
		conn.execute(
			"""
			INSERT INTO acme_sessions
				(id, account_id, cert_id, domains, key_type, order_url, finalize_url,
				 authorizations, status, expires_at, created_at, updated_at)
			VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?)
			""",
			(
				session_id, account_id, cert_id, dumps(domains), key_type, order_url,
				finalize_url, dumps(authorizations), expires_at, now, now,
			),
		)


def get_session(conn: sqlite3.Connection, session_id: str) -> Optional[sqlite3.Row]:
	return conn.execute("SELECT * FROM acme_sessions WHERE id = ?", (session_id,)).fetchone()


def find_pending_session(
	conn: sqlite3.Connection,
	*,
	account_id: int,
	domains: list[str],
	key_type: str,
	now: datetime,
) -> Optional[sqlite3.Row]:
	"""Most recent unexpired pending session for the same order parameters."""
	return conn.execute(
		"""
		SELECT * FROM acme_sessions
		WHERE account_id = ? AND domains = ? AND key_type = ? AND status = 'pending'
			AND expires_at > ?
		ORDER BY created_at DESC LIMIT 1
		""",
		(account_id, dumps(domains), key_type, now),
	).fetchone()


def claim_session(
	conn: sqlite3.Connection,
	session_id: str,
	*,
	mode: str,
	dns_provider_id: int | None,
) -> bool:
	"""Move a pending session to processing. Only one caller can win."""
	with transaction(conn, immediate=True):
		cur = conn.execute(
			"""
			UPDATE acme_sessions SET status = 'processing', mode = ?, dns_provider_id = ?,
				error = NULL, updated_at = ?
			WHERE id = ? AND status = 'pending' AND (mode IS NULL OR mode = ?)
			""",
			(mode, dns_provider_id, utcnow(), session_id, mode),
		)
		return cur.rowcount > 0


def update_session(
	conn: sqlite3.Connection,
	session_id: str,
	*,
	status=UNSET,
	error=UNSET,
	authorizations=UNSET,
	dns_records=UNSET,
	expected_status: str | None = None,
) -> bool:
	fields: list[tuple[str, object]] = []
	if status is not UNSET:
		fields.append(("status", status))
	if error is not UNSET:
		fields.append(("error", error))
	if authorizations is not UNSET:
		fields.append(("authorizations", dumps(authorizations)))
	if dns_records is not UNSET:
		fields.append(("dns_records", dumps(dns_records)))
	sql = ", ".join(f"{col} = ?" for col, _ in fields)
	params: list = [val for _, val in fields]
	where = "id = ?"
	params.extend([utcnow(), session_id])
	if expected_status is not None:
		where += " AND status = ?"
		params.append(expected_status)
	with transaction(conn, immediate=True):
		cur = conn.execute(
			f"UPDATE acme_sessions SET {sql + ', ' if sql else ''}updated_at = ? WHERE {where}",
			params,
		)
		return cur.rowcount > 0


def list_sessions_by_status(conn: sqlite3.Connection, status: str) -> list[sqlite3.Row]:
	return conn.execute(
		"SELECT * FROM acme_sessions WHERE status = ? ORDER BY created_at", (status,)
	).fetchall()


def count_active_sessions(conn: sqlite3.Connection, account_id: int) -> int:
	"""Sessions of an account with a flow currently running."""
	return conn.execute(
		"SELECT COUNT(*) FROM acme_sessions WHERE account_id = ? AND status = 'processing'",
		(account_id,),
	).fetchone()[0]


def count_active_sessions_for_cert(conn: sqlite3.Connection, cert_id: int) -> int:
	return conn.execute(
		"SELECT COUNT(*) FROM acme_sessions WHERE cert_id = ? AND status = 'processing'",
		(cert_id,),
	).fetchone()[0]
