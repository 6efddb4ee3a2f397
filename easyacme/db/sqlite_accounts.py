#!/usr/bin/env python3
#
# easyacme/db/sqlite_accounts.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""ACME account rows."""

from __future__ import annotations

import sqlite3
from typing import Optional

from ..utils.time import utcnow
from .sqlite_runtime import transaction


def create_account(
	conn: sqlite3.Connection,
	*,
	name: str,
	key_type: str,
	private_key_ref: str,
	server: str,
	email: str,
	uri: str,
	status: str,
	eab_key_id: str | None = None,
) -> int:
	"""Insert an account and return its id."""
	now = utcnow()
	with transaction(conn, immediate=True):
		cur = conn.execute(
			"""
			INSERT INTO acme_accounts
				(name, key_type, private_key_ref, server, email, uri, status, eab_key_id, created_at, updated_at)
			VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
			""",
			(name, key_type, private_key_ref, server, email, uri, status, eab_key_id, now, now),
		)
		return cur.lastrowid


def get_account(conn: sqlite3.Connection, account_id: int) -> Optional[sqlite3.Row]:
	return conn.execute("SELECT * FROM acme_accounts WHERE id = ?", (account_id,)).fetchone()


def list_accounts(
	conn: sqlite3.Connection,
	*,
	page: int = 1,
	page_size: int = 20,
	name: str | None = None,
	status: str | None = None,
	bind_eab: bool | None = None,
) -> tuple[list[sqlite3.Row], int]:
	"""Return one page of accounts (newest first) and the total match count."""
	clauses: list[str] = []
	params: list = []
	if name:
		clauses.append("name LIKE ?")
		params.append(f"%{name}%")
	if status:
		clauses.append("status = ?")
		params.append(status)
	if bind_eab is True:
		clauses.append("eab_key_id IS NOT NULL AND eab_key_id != ''")
	elif bind_eab is False:
		clauses.append("(eab_key_id IS NULL OR eab_key_id = '')")
	where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

	total = conn.execute(f"SELECT COUNT(*) FROM acme_accounts {where}", params).fetchone()[0]
	rows = conn.execute(
		f"SELECT * FROM acme_accounts {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
		(*params, page_size, (page - 1) * page_size),
	).fetchall()
	return rows, total


def set_account_status(
	conn: sqlite3.Connection,
	account_id: int,
	status: str,
	*,
	expected: str,
) -> bool:
	"""Move an account to ``status`` only if it is currently ``expected``."""
	with transaction(conn, immediate=True):
		cur = conn.execute(
			"UPDATE acme_accounts SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
			(status, utcnow(), account_id, expected),
		)
		return cur.rowcount > 0


def delete_account(conn: sqlite3.Connection, account_id: int) -> bool:
	with transaction(conn, immediate=True):
		cur = conn.execute("DELETE FROM acme_accounts WHERE id = ?", (account_id,))
		return cur.rowcount > 0


def count_accounts_by_status(conn: sqlite3.Connection) -> dict[str, int]:
	rows = conn.execute("SELECT status, COUNT(*) AS cnt FROM acme_accounts GROUP BY status").fetchall()
	return {row["status"]: row["cnt"] for row in rows}
