"""Tests for the periodic maintenance tasks."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from easyacme.db import sqlite_accounts, sqlite_certs, sqlite_sessions
from easyacme.tasks.maintenance import (
	purge_finished_sessions,
	sqlite_maintenance,
	sweep_expired_certificates,
)
from easyacme.utils.time import utcnow


@pytest.fixture()
def account_id(conn) -> int:
	return sqlite_accounts.create_account(
		conn,
		name="primary",
		key_type="P256",
		private_key_ref="sec_unused",
		server="https://ca.test/directory",
		email="ops@example.com",
		uri="https://ca.test/acct/1",
		status="valid",
		eab_key_id=None,
	)


def _issued_cert(conn, account_id: int, *, age_days: int, validity_days: int = 90) -> int:
	cert_id = sqlite_certs.create_cert(conn, account_id=account_id, domains=["example.com"], key_type="P256")
	assert sqlite_certs.mark_issued(
		conn,
		cert_id,
		expected_version=sqlite_certs.get_cert(conn, cert_id)["version"],
		cert_type="DV",
		issued_at=utcnow() - timedelta(days=age_days),
		validity_days=validity_days,
		certificate="-----BEGIN CERTIFICATE-----",
		issuer_certificate="",
		csr="",
		private_key_ref="sec_key",
		cert_url="https://ca.test/cert/1",
		cert_stable_url=None,
		dns_provider_id=None,
	)
	return cert_id


def _session(conn, account_id: int, cert_id: int, *, expires_in: timedelta) -> str:
	session_id = f"sess_{cert_id}"
	sqlite_sessions.create_session(
		conn,
		session_id=session_id,
		account_id=account_id,
		cert_id=cert_id,
		domains=["example.com"],
		key_type="P256",
		order_url="https://ca.test/order/1",
		finalize_url="https://ca.test/order/1/finalize",
		authorizations=[],
		expires_at=utcnow() + expires_in,
	)
	return session_id


def _age(conn, table: str, row_id, column: str, days: int) -> None:
	conn.execute(f"UPDATE {table} SET {column} = ? WHERE id = ?", (utcnow() - timedelta(days=days), row_id))


class TestSweepExpiredCertificates:
	def test_only_lapsed_certificates_move(self, conn, cfg, account_id):
		fresh = _issued_cert(conn, account_id, age_days=10)
		lapsed = _issued_cert(conn, account_id, age_days=91)
		before = sqlite_certs.get_cert(conn, lapsed)["version"]

		assert asyncio.run(sweep_expired_certificates(cfg.db_path)) == 1

		assert sqlite_certs.get_cert(conn, fresh)["cert_status"] == "issued"
		row = sqlite_certs.get_cert(conn, lapsed)
		assert row["cert_status"] == "expired"
		assert row["version"] == before + 1

		assert asyncio.run(sweep_expired_certificates(cfg.db_path)) == 0

	def test_missing_database(self, tmp_path):
		assert asyncio.run(sweep_expired_certificates(tmp_path / "absent.db")) == 0


class TestPurgeFinishedSessions:
	def test_expired_pending_session_is_abandoned(self, conn, cfg, account_id):
		cert_id = sqlite_certs.create_cert(conn, account_id=account_id, domains=["example.com"], key_type="P256")
		session_id = _session(conn, account_id, cert_id, expires_in=timedelta(minutes=-1))

		result = asyncio.run(purge_finished_sessions(cfg.db_path))

		assert result["abandoned"] == 1
		row = sqlite_sessions.get_session(conn, session_id)
		assert row["status"] == "abandoned"
		assert row["error"] == "expired"

	def test_old_finished_sessions_and_orphans_are_deleted(self, conn, cfg, account_id):
		old_cert = sqlite_certs.create_cert(conn, account_id=account_id, domains=["example.com"], key_type="P256")
		old_session = _session(conn, account_id, old_cert, expires_in=timedelta(hours=1))
		sqlite_sessions.update_session(conn, old_session, status="invalid", error="boom")
		_age(conn, "acme_sessions", old_session, "updated_at", 8)
		_age(conn, "acme_certs", old_cert, "created_at", 8)

		open_cert = sqlite_certs.create_cert(conn, account_id=account_id, domains=["b.example.com"], key_type="P256")
		open_session = _session(conn, account_id, open_cert, expires_in=timedelta(hours=1))
		_age(conn, "acme_certs", open_cert, "created_at", 2)

		issued = _issued_cert(conn, account_id, age_days=30)
		_age(conn, "acme_certs", issued, "created_at", 30)

		result = asyncio.run(purge_finished_sessions(cfg.db_path))

		assert result == {"abandoned": 0, "sessions_deleted": 1, "certs_deleted": 1}
		assert sqlite_sessions.get_session(conn, old_session) is None
		assert sqlite_certs.get_cert(conn, old_cert) is None
		assert sqlite_sessions.get_session(conn, open_session)["cert_id"] == open_cert
		assert sqlite_certs.get_cert(conn, open_cert) is not None
		assert sqlite_certs.get_cert(conn, issued) is not None


class TestSqliteMaintenance:
	def test_runs_on_live_database(self, conn, cfg):
		asyncio.run(sqlite_maintenance(cfg.db_path))
		assert conn.execute("PRAGMA integrity_check").fetchone()[0] == "ok"
