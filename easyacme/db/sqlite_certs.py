#!/usr/bin/env python3
#
# easyacme/db/sqlite_certs.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate rows.

Status writes are compare-and-set on ``version`` (and the expected status),
so two writers racing on the same certificate cannot both win.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Optional

from ..utils.time import utcnow
from .sqlite_runtime import dumps, transaction


def create_cert(
	conn: sqlite3.Connection,
	*,
	account_id: int,
	domains: list[str],
	key_type: str,
	dns_provider_id: int | None = None,
) -> int:
	"""Insert a ``not_issued`` certificate placeholder and return its id."""
	now = utcnow()
	with transaction(conn, immediate=True):
		cur = conn.execute(
			"""
			INSERT INTO acme_certs
				(account_id, dns_provider_id, domains, key_type, cert_status, created_at, updated_at)
			VALUES (?, ?, ?, ?, 'not_issued', ?, ?)
			""",
			(account_id, dns_provider_id, dumps(domains), key_type, now, now),
		)
		return cur.lastrowid


def get_cert(conn: sqlite3.Connection, cert_id: int) -> Optional[sqlite3.Row]:
	return conn.execute("SELECT * FROM acme_certs WHERE id = ?", (cert_id,)).fetchone()


def list_certs(
	conn: sqlite3.Connection,
	*,
	page: int = 1,
	page_size: int = 20,
	domain: str | None = None,
	status: str | None = None,
	account_id: int | None = None,
) -> tuple[list[sqlite3.Row], int]:
	clauses: list[str] = []
	params: list = []
	if domain:
		clauses.append("domains LIKE ?")
		params.append(f"%{domain.strip().lower()}%")
	if status:
		clauses.append("cert_status = ?")
		params.append(status)
	if account_id is not None:
		clauses.append("account_id = ?")
		params.append(account_id)
	where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

	total = conn.execute(f"SELECT COUNT(*) FROM acme_certs {where}", params).fetchone()[0]
	rows = conn.execute(
		f"SELECT * FROM acme_certs {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
		(*params, page_size, (page - 1) * page_size),
	).fetchall()
	return rows, total


def mark_issued(
	conn: sqlite3.Connection,
	cert_id: int,
	*,
	expected_version: int,
	cert_type: str,
	issued_at: datetime,
	validity_days: int,
	certificate: str,
	issuer_certificate: str,
	csr: str,
	private_key_ref: str,
	cert_url: str,
	cert_stable_url: str | None,
	dns_provider_id: int | None,
) -> bool:
	"""Record an issued certificate on a ``not_issued`` row."""
	with transaction(conn, immediate=True):
		cur = conn.execute(
			"""
			UPDATE acme_certs SET
				cert_status = 'issued', cert_type = ?, issued_at = ?, validity_days = ?,
				certificate = ?, issuer_certificate = ?, csr = ?, private_key_ref = ?,
				cert_url = ?, cert_stable_url = ?, dns_provider_id = ?,
				version = version + 1, updated_at = ?
			WHERE id = ? AND version = ? AND cert_status = 'not_issued'
			""",
			(
				cert_type, issued_at, validity_days,
				certificate, issuer_certificate, csr, private_key_ref,
				cert_url, cert_stable_url, dns_provider_id,
				utcnow(), cert_id, expected_version,
			),
		)
		return cur.rowcount > 0


def set_cert_status(
	conn: sqlite3.Connection,
	cert_id: int,
	status: str,
	*,
	expected_status: str,
	expected_version: int,
) -> bool:
	with transaction(conn, immediate=True):
		cur = conn.execute(
			"""
			UPDATE acme_certs SET cert_status = ?, version = version + 1, updated_at = ?
			WHERE id = ? AND cert_status = ? AND version = ?
			""",
			(status, utcnow(), cert_id, expected_status, expected_version),
		)
		return cur.rowcount > 0


def delete_cert(conn: sqlite3.Connection, cert_id: int) -> bool:
	with transaction(conn, immediate=True):
		cur = conn.execute("DELETE FROM acme_certs WHERE id = ?", (cert_id,))
		return cur.rowcount > 0


def count_certs_for_account(conn: sqlite3.Connection, account_id: int, *, issued_only: bool = False) -> int:
	sql = "SELECT COUNT(*) FROM acme_certs WHERE account_id = ?"
	if issued_only:
		sql += " AND cert_status != 'not_issued'"
	return conn.execute(sql, (account_id,)).fetchone()[0]


def delete_unissued_for_account(conn: sqlite3.Connection, account_id: int) -> int:
	with transaction(conn, immediate=True):
		cur = conn.execute(
			"DELETE FROM acme_certs WHERE account_id = ? AND cert_status = 'not_issued'",
			(account_id,),
		)
		return cur.rowcount


def count_certs_by_status(conn: sqlite3.Connection) -> dict[str, int]:
	rows = conn.execute("SELECT cert_status, COUNT(*) AS cnt FROM acme_certs GROUP BY cert_status").fetchall()
	return {row["cert_status"]: row["cnt"] for row in rows}


def count_expired_issued(conn: sqlite3.Connection, now: datetime) -> int:
	"""Issued certificates whose validity has elapsed but were not swept yet."""
	return conn.execute(
		"""
		SELECT COUNT(*) FROM acme_certs
		WHERE cert_status = 'issued' AND issued_at IS NOT NULL
			AND julianday(issued_at) + validity_days <= julianday(?)
		""",
		(now,),
	).fetchone()[0]


def monthly_issued_counts(conn: sqlite3.Connection, since: datetime) -> dict[str, int]:
	"""Certificates issued per ``YYYY-MM`` since ``since``."""
	rows = conn.execute(
		"""
		SELECT substr(issued_at, 1, 7) AS month, COUNT(*) AS cnt FROM acme_certs
		WHERE issued_at IS NOT NULL AND issued_at >= ?
		GROUP BY month
		""",
		(since,),
	).fetchall()
	return {row["month"]: row["cnt"] for row in rows}
