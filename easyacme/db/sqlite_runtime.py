#!/usr/bin/env python3
#
# easyacme/db/sqlite_runtime.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SQLite runtime helpers: adapters, connections, and transactions."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

_log = logging.getLogger(__name__)

# Distinguishes "not provided" from "set to None" in update functions.
UNSET: Any = object()


def _adapt_datetime(value: datetime) -> str:
	if value.tzinfo is None:
		raise ValueError("Naive datetime not allowed in SQLite")
	return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _convert_datetime(value: bytes) -> datetime:
	s = value.decode("utf-8")
	if s.endswith("Z"):
		s = s[:-1] + "+00:00"
	try:
		dt = datetime.fromisoformat(s)
		if dt.tzinfo is None:
			dt = dt.replace(tzinfo=timezone.utc)
		return dt.astimezone(timezone.utc)
	except ValueError:
		_log.error(
			"Corrupt timestamp in database: %r - returning epoch",
			value.decode("utf-8", errors="replace"),
		)
		return datetime(1970, 1, 1, tzinfo=timezone.utc)


# NOTE: sqlite3 adapter/converter registration is process-global.
sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("timestamp", _convert_datetime)


def db_timestamp(value: datetime) -> str:
	"""Render a datetime exactly as stored, for raw SQL comparisons."""
	return _adapt_datetime(value)


def dumps(value: Any) -> str:
	"""Serialize a JSON column."""
	return json.dumps(value, separators=(",", ":"))


def loads(value: str | None, default: Any = None) -> Any:
	"""Deserialize a JSON column, tolerating NULL."""
	if value is None or value == "":
		return default
	return json.loads(value)


# ---------------------------------------------------------------------------
# Connection Registry
# ---------------------------------------------------------------------------

_OPEN_CONNECTIONS: set[sqlite3.Connection] = set()
_CONNECTIONS_LOCK = threading.Lock()


def connect(db_path: Path) -> sqlite3.Connection:
	"""Create a SQLite connection configured for this application.

	Retries WAL activation while another connection holds the write lock.
	"""
	db_path = Path(db_path)
	db_path.parent.mkdir(parents=True, exist_ok=True)
	conn = sqlite3.connect(
		str(db_path),
		detect_types=sqlite3.PARSE_DECLTYPES,
		check_same_thread=False,
		timeout=30.0,
		isolation_level=None,
	)
	conn.row_factory = sqlite3.Row

	max_retries = 5
	for attempt in range(max_retries):
		try:
			current_mode = conn.execute("PRAGMA journal_mode").fetchone()[0].upper()
			if current_mode != "WAL":
				conn.execute("PRAGMA journal_mode=WAL")
				_log.debug("Enabled WAL mode for database")
			break
		except sqlite3.OperationalError as e:
			if "locked" in str(e).lower() and attempt < max_retries - 1:
				wait = 0.1 * (2 ** attempt)
				_log.debug(
					"Database locked during WAL activation (attempt %d/%d), retrying in %.1fs",
					attempt + 1, max_retries, wait,
				)
				time.sleep(wait)
			else:
				raise

	conn.execute("PRAGMA foreign_keys=ON")

	with _CONNECTIONS_LOCK:
		_OPEN_CONNECTIONS.add(conn)
	return conn


def close_connection(conn: sqlite3.Connection) -> None:
	"""Close and untrack a SQLite connection."""
	with _CONNECTIONS_LOCK:
		_OPEN_CONNECTIONS.discard(conn)
	conn.close()


def close_all_connections() -> int:
	"""Close all tracked connections for graceful shutdown."""
	with _CONNECTIONS_LOCK:
		connections = list(_OPEN_CONNECTIONS)
		_OPEN_CONNECTIONS.clear()

	closed = 0
	for conn in connections:
		try:
			conn.close()
			closed += 1
		except sqlite3.Error as e:
			_log.warning("Failed to close SQLite connection: %s", e)
	return closed


def checkpoint_wal(db_path: Path) -> int:
	"""Truncate the WAL on shutdown. Returns the busy flag (-1 on failure)."""
	conn: sqlite3.Connection | None = None
	try:
		conn = sqlite3.connect(str(db_path), timeout=30.0)
		row = conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchone()
		return int(row[0]) if row else -1
	except sqlite3.Error as e:
		_log.warning("WAL checkpoint failed: %s", e)
		return -1
	finally:
		if conn is not None:
			conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection, *, immediate: bool = False):
	"""Transaction context manager that commits or rolls back on error.

	If already inside a transaction, this is a no-op (the outer transaction
	controls commit/rollback). Inner functions must not swallow exceptions
	the outer transaction needs to see.
	"""
	started_tx = False
	if not conn.in_transaction:
		conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
		started_tx = True
	try:
		yield
		if started_tx:
			conn.commit()
	except BaseException:
		if started_tx and conn.in_transaction:
			conn.rollback()
		raise
