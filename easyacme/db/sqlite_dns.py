#!/usr/bin/env python3
#
# easyacme/db/sqlite_dns.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""DNS provider credential rows. Vendor secrets live in the secret store."""

from __future__ import annotations

import sqlite3
from typing import Iterable, Optional

from ..utils.time import utcnow
from .sqlite_runtime import UNSET, transaction


def create_provider(
	conn: sqlite3.Connection,
	*,
	name: str,
	type: str,
	secret_id: str,
	secret_key_ref: str,
	notes: str = "",
) -> int:
	now = utcnow()
	with transaction(conn, immediate=True):
		cur = conn.execute(
			"""
			INSERT INTO dns_providers (name, type, secret_id, secret_key_ref, notes, created_at, updated_at)
			VALUES (?, ?, ?, ?, ?, ?, ?)
			""",
			(name, type, secret_id, secret_key_ref, notes, now, now),
		)
		return cur.lastrowid


def get_provider(conn: sqlite3.Connection, provider_id: int) -> Optional[sqlite3.Row]:
	return conn.execute("SELECT * FROM dns_providers WHERE id = ?", (provider_id,)).fetchone()


def list_providers(
	conn: sqlite3.Connection,
	*,
	page: int = 1,
	page_size: int = 20,
	name: str | None = None,
	type: str | None = None,
) -> tuple[list[sqlite3.Row], int]:
	clauses: list[str] = []
	params: list = []
	if name:
		clauses.append("name LIKE ?")
		params.append(f"%{name}%")
	if type:
		clauses.append("type = ?")
		params.append(type)
	where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

	total = conn.execute(f"SELECT COUNT(*) FROM dns_providers {where}", params).fetchone()[0]
	rows = conn.execute(
		f"SELECT * FROM dns_providers {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
		(*params, page_size, (page - 1) * page_size),
	).fetchall()
	return rows, total


def update_provider(
	conn: sqlite3.Connection,
	provider_id: int,
	*,
	name=UNSET,
	type=UNSET,
	secret_id=UNSET,
	secret_key_ref=UNSET,
	notes=UNSET,
) -> bool:
	"""Update the supplied columns. Returns False if the row does not exist."""
	fields = {
		"name": name,
		"type": type,
		"secret_id": secret_id,
		"secret_key_ref": secret_key_ref,
		"notes": notes,
	}
	updates = [(col, val) for col, val in fields.items() if val is not UNSET]
	with transaction(conn, immediate=True):
		if not updates:
			return get_provider(conn, provider_id) is not None
		sql = ", ".join(f"{col} = ?" for col, _ in updates)
		cur = conn.execute(
			f"UPDATE dns_providers SET {sql}, updated_at = ? WHERE id = ?",
			(*[val for _, val in updates], utcnow(), provider_id),
		)
		return cur.rowcount > 0


def delete_provider(conn: sqlite3.Connection, provider_id: int) -> bool:
	with transaction(conn, immediate=True):
		cur = conn.execute("DELETE FROM dns_providers WHERE id = ?", (provider_id,))
		return cur.rowcount > 0


def get_providers_by_ids(conn: sqlite3.Connection, ids: Iterable[int]) -> list[sqlite3.Row]:
	ids = list(ids)
	if not ids:
		return []
	marks = ",".join("?" for _ in ids)
	return conn.execute(f"SELECT * FROM dns_providers WHERE id IN ({marks})", ids).fetchall()


def count_providers_by_type(conn: sqlite3.Connection) -> dict[str, int]:
	rows = conn.execute("SELECT type, COUNT(*) AS cnt FROM dns_providers GROUP BY type").fetchall()
	return {row["type"]: row["cnt"] for row in rows}
