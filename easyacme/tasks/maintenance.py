#!/usr/bin/env python3
#
# easyacme/tasks/maintenance.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Periodic maintenance tasks for database health and cleanup."""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path

import aiosqlite

from easyacme.db.sqlite_runtime import db_timestamp
from easyacme.utils.config import get_config
from easyacme.utils.time import parse_utc, utcnow

_log = logging.getLogger(__name__)

__all__ = [
	"sqlite_maintenance",
	"sweep_expired_certificates",
	"purge_finished_sessions",
]

FINISHED_SESSION_RETENTION = timedelta(days=7)
ORPHAN_CERT_GRACE = timedelta(days=1)


def _resolve_db_path(db_path: Path | None) -> Path | None:
	path = Path(db_path) if db_path is not None else get_config().db_path
	if not path.exists():
		_log.warning("MAINTENANCE SQLite database not found at %s", path)
		return None
	return path


async def sqlite_maintenance(db_path: Path | None = None) -> None:
	"""WAL checkpoint, ANALYZE and PRAGMA optimize.

	VACUUM is left out (heavy I/O, run manually if needed).
	"""
	path = _resolve_db_path(db_path)
	if path is None:
		return
	async with aiosqlite.connect(path) as db:
		await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
		await db.execute("ANALYZE")
		await db.execute("PRAGMA optimize")
	_log.info("MAINTENANCE SQLite maintenance completed")


async def sweep_expired_certificates(db_path: Path | None = None) -> int:
	"""Move issued certificates past their validity to ``expired``.

	Reads already report them as expired; this keeps filters and counts
	on the stored status in line.
	"""
	path = _resolve_db_path(db_path)
	if path is None:
		return 0
	now = utcnow()
	expired: list[tuple[int, int]] = []
	async with aiosqlite.connect(path) as db:
		cursor = await db.execute(
			"SELECT id, issued_at, validity_days, version FROM acme_certs "
			"WHERE cert_status = 'issued' AND issued_at IS NOT NULL AND validity_days IS NOT NULL"
		)
		for cert_id, issued_at, validity_days, version in await cursor.fetchall():
			issued = parse_utc(issued_at)
			if issued is not None and issued + timedelta(days=validity_days) <= now:
				expired.append((cert_id, version))

		swept = 0
		for cert_id, version in expired:
			cur = await db.execute(
				"UPDATE acme_certs SET cert_status = 'expired', version = version + 1, updated_at = ? "
				"WHERE id = ? AND cert_status = 'issued' AND version = ?",
				(db_timestamp(now), cert_id, version),
			)
			swept += cur.rowcount
		await db.commit()

	if swept:
		_log.info("MAINTENANCE CERT_EXPIRY_SWEEP expired=%d", swept)
	return swept


async def purge_finished_sessions(db_path: Path | None = None) -> dict[str, int]:
	"""Close expired sessions and drop stale session and certificate rows.

	- pending sessions past ``expires_at`` become ``abandoned``
	- finished sessions older than a week are deleted
	- never-issued certificate rows without an open session are deleted
	  after a day
	"""
	path = _resolve_db_path(db_path)
	if path is None:
		return {"abandoned": 0, "sessions_deleted": 0, "certs_deleted": 0}
	now = utcnow()
	stamp = db_timestamp(now)
	async with aiosqlite.connect(path) as db:
		# Deleted certificates must null out acme_sessions.cert_id
		await db.execute("PRAGMA foreign_keys=ON")
		cur = await db.execute(
			"UPDATE acme_sessions SET status = 'abandoned', error = 'expired', updated_at = ? "
			"WHERE status = 'pending' AND expires_at <= ?",
			(stamp, stamp),
		)
		abandoned = cur.rowcount

		cur = await db.execute(
			"DELETE FROM acme_sessions "
			"WHERE status IN ('valid', 'invalid', 'abandoned') AND updated_at < ?",
			(db_timestamp(now - FINISHED_SESSION_RETENTION),),
		)
		sessions_deleted = cur.rowcount

		cur = await db.execute(
			"DELETE FROM acme_certs "
			"WHERE cert_status = 'not_issued' AND created_at < ? "
			"AND NOT EXISTS ("
			"  SELECT 1 FROM acme_sessions s "
			"  WHERE s.cert_id = acme_certs.id AND s.status IN ('pending', 'processing')"
			")",
			(db_timestamp(now - ORPHAN_CERT_GRACE),),
		)
		certs_deleted = cur.rowcount
		await db.commit()

	result = {"abandoned": abandoned, "sessions_deleted": sessions_deleted, "certs_deleted": certs_deleted}
	if any(result.values()):
		_log.info(
			"MAINTENANCE SESSION_PURGE abandoned=%d sessions_deleted=%d certs_deleted=%d",
			abandoned, sessions_deleted, certs_deleted,
		)
	return result
