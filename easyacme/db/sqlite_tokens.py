#!/usr/bin/env python3
#
# easyacme/db/sqlite_tokens.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""API token rows. Only SHA-256 hashes of tokens are stored."""

from __future__ import annotations

import sqlite3
from typing import Optional

from ..utils.crypto import hash_token
from ..utils.time import utcnow
from .sqlite_runtime import dumps, loads, transaction


def create_token(conn: sqlite3.Connection, name: str, token: str, permissions: list[str]) -> int:
	with transaction(conn, immediate=True):
		cur = conn.execute(
			"INSERT INTO api_tokens (name, token_hash, permissions, created_at) VALUES (?, ?, ?, ?)",
			(name, hash_token(token), dumps(sorted(set(permissions))), utcnow()),
		)
		return cur.lastrowid


def get_token(conn: sqlite3.Connection, token: str) -> Optional[sqlite3.Row]:
	"""Look up a presented token by its hash."""
	return conn.execute(
		"SELECT * FROM api_tokens WHERE token_hash = ?", (hash_token(token),)
	).fetchone()


def token_permissions(row: sqlite3.Row) -> set[str]:
	return set(loads(row["permissions"], []))


def touch_token(conn: sqlite3.Connection, token_id: int) -> None:
	with transaction(conn):
		conn.execute("UPDATE api_tokens SET last_used_at = ? WHERE id = ?", (utcnow(), token_id))
