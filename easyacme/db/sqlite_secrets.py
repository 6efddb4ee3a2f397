#!/usr/bin/env python3
#
# easyacme/db/sqlite_secrets.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Ciphertext rows behind the secret store."""

from __future__ import annotations

import sqlite3

from ..utils.time import utcnow
from .sqlite_runtime import transaction


def insert_secret(conn: sqlite3.Connection, ref: str, ciphertext: str) -> None:
	with transaction(conn, immediate=True):
		conn.execute(
			"INSERT INTO secrets (id, ciphertext, created_at) VALUES (?, ?, ?)",
			(ref, ciphertext, utcnow()),
		)


def get_secret(conn: sqlite3.Connection, ref: str) -> str | None:
	row = conn.execute("SELECT ciphertext FROM secrets WHERE id = ?", (ref,)).fetchone()
	return row["ciphertext"] if row else None


def delete_secret(conn: sqlite3.Connection, ref: str) -> bool:
	"""Delete a secret. Returns True if a row was removed."""
	with transaction(conn, immediate=True):
		cur = conn.execute("DELETE FROM secrets WHERE id = ?", (ref,))
		return cur.rowcount > 0
