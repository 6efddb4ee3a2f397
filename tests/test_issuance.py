"""End-to-end issuance against the fake CA with fake or mocked DNS."""

from __future__ import annotations

import asyncio
import dataclasses

import httpx
import pytest

from easyacme.db import sqlite_certs, sqlite_sessions
from easyacme.dns.base import RecordHandle
from easyacme.errors import (
	AuthorizationFailed,
	DNSAuthError,
	FinalizationFailed,
	OperationTimeoutError,
	ResourceNotFoundError,
	StateConflictError,
	ValidationError,
)
from easyacme.services.context import ServiceContext
from easyacme.services.dns_providers import create_provider
from easyacme.services.issuance import IssuanceManager, resolve_mode
from easyacme.services.orders import create_order


def _open(conn, ctx, account, domains, key_type="P256"):
	return asyncio.run(create_order(conn, ctx, account_id=account["id"], domains=domains, key_type=key_type))


def _session(conn, session_id):
	return sqlite_sessions.get_session(conn, session_id)


# ---------------------------------------------------------------------------
# Mode resolution
# ---------------------------------------------------------------------------

class TestResolveMode:
	@pytest.mark.parametrize("mode, provider, expected", [
		(None, None, ("manual", None)),
		(None, 3, ("auto", 3)),
		(None, "7", ("auto", 7)),
		("manual", None, ("manual", None)),
		("auto", 2, ("auto", 2)),
	])
	def test_valid(self, mode, provider, expected):
		assert resolve_mode(mode, provider) == expected

	@pytest.mark.parametrize("mode, provider", [
		("auto", None),
		("manual", 1),
		(None, ""),
		(None, "  "),
		(None, "abc"),
		("dns-01", None),
	])
	def test_invalid(self, mode, provider):
		with pytest.raises(ValidationError):
			resolve_mode(mode, provider)


# ---------------------------------------------------------------------------
# Manual mode
# ---------------------------------------------------------------------------

class TestManualFlow:
	def test_issues_certificate(self, conn, ctx, account, fake_ca):
		session = _open(conn, ctx, account, ["example.com", "*.example.com"])
		manager = IssuanceManager(ctx)
		cert = asyncio.run(manager.issue(
			conn,
			account_id=account["id"],
			domains=["example.com", "*.example.com"],
			key_type="P256",
			session_id=session["id"],
			mode="manual",
		))

		assert cert["id"] == session["cert_id"]
		assert cert["cert_status"] == "issued"
		assert cert["validity_days"] == 90
		assert cert["remaining_days"] == 90
		assert cert["dns_provider_id"] is None
		assert len(fake_ca.answered) == 2

		row = sqlite_certs.get_cert(conn, cert["id"])
		assert row["private_key_ref"] is not None
		assert "PRIVATE KEY" not in (row["certificate"] or "")
		assert _session(conn, session["id"])["status"] == "valid"

	def test_manual_without_session_id_rejected(self, conn, ctx, account):
		with pytest.raises(ValidationError):
			asyncio.run(IssuanceManager(ctx).issue(
				conn, account_id=account["id"], domains=["example.com"], key_type="P256", mode="manual",
			))

	def test_pending_session_is_reused_when_id_omitted(self, conn, ctx, account, fake_ca):
		session = _open(conn, ctx, account, ["example.com"])
		cert = asyncio.run(IssuanceManager(ctx).issue(
			conn, account_id=account["id"], domains=["example.com"], key_type="P256",
		))
		assert cert["id"] == session["cert_id"]
		assert len(fake_ca.orders) == 1

	def test_mismatched_session_rejected(self, conn, ctx, account):
		session = _open(conn, ctx, account, ["example.com"])
		with pytest.raises(ValidationError):
			asyncio.run(IssuanceManager(ctx).issue(
				conn, account_id=account["id"], domains=["other.example.com"], key_type="P256",
				session_id=session["id"], mode="manual",
			))

	def test_invalid_authorization_fails_session(self, conn, ctx, account, fake_ca):
		fake_ca.authz_outcome = "invalid"
		session = _open(conn, ctx, account, ["example.com"])
		with pytest.raises(AuthorizationFailed):
			asyncio.run(IssuanceManager(ctx).issue(
				conn, account_id=account["id"], domains=["example.com"], key_type="P256",
				session_id=session["id"], mode="manual",
			))
		row = _session(conn, session["id"])
		assert row["status"] == "invalid"
		assert "Incorrect TXT record" in row["error"]
		assert sqlite_certs.get_cert(conn, session["cert_id"])["cert_status"] == "not_issued"

	def test_authorization_that_stays_pending_times_out(self, conn, cfg, fake_ca, account):
		fake_ca.authz_outcome = "pending"
		ctx = ServiceContext(dataclasses.replace(cfg, acme_poll_timeout=0.5), acme_transport=fake_ca.transport)
		session = _open(conn, ctx, account, ["example.com"])
		with pytest.raises(OperationTimeoutError):
			asyncio.run(IssuanceManager(ctx).issue(
				conn, account_id=account["id"], domains=["example.com"], key_type="P256",
				session_id=session["id"], mode="manual",
			))
		assert _session(conn, session["id"])["status"] == "invalid"
		cert = sqlite_certs.get_cert(conn, session["cert_id"])
		assert cert["cert_status"] == "not_issued"
		assert cert["certificate"] is None
		assert cert["private_key_ref"] is None
		assert fake_ca.certs == {}
		assert conn.execute("SELECT COUNT(*) FROM secrets").fetchone()[0] == 1  # account key only

	def test_san_mismatch_discards_certificate(self, conn, ctx, account, fake_ca):
		fake_ca.extra_san = "unrequested.example.net"
		session = _open(conn, ctx, account, ["example.com"])
		with pytest.raises(FinalizationFailed):
			asyncio.run(IssuanceManager(ctx).issue(
				conn, account_id=account["id"], domains=["example.com"], key_type="P256",
				session_id=session["id"], mode="manual",
			))
		cert = sqlite_certs.get_cert(conn, session["cert_id"])
		assert cert["cert_status"] == "not_issued"
		assert cert["private_key_ref"] is None
		assert cert["certificate"] is None
		assert conn.execute("SELECT COUNT(*) FROM secrets").fetchone()[0] == 1  # account key only


# ---------------------------------------------------------------------------
# Automatic mode
# ---------------------------------------------------------------------------

class TestAutoFlow:
	def test_publishes_validates_and_cleans_up(self, conn, fake_dns_ctx, account, fake_dns, fake_ca):
		provider = create_provider(
			conn, fake_dns_ctx, name="cf", provider_type="cloudflare", secret_id="token", secret_key="zone",
		)
		cert = asyncio.run(IssuanceManager(fake_dns_ctx).issue(
			conn,
			account_id=account["id"],
			domains=["example.com", "*.example.com", "www.example.com"],
			key_type="P384",
			dns_provider_id=provider["id"],
		))

		assert cert["cert_status"] == "issued"
		assert cert["dns_provider_id"] == provider["id"]
		assert sorted(f for f, _ in fake_dns.created) == [
			"_acme-challenge.example.com",
			"_acme-challenge.example.com",
			"_acme-challenge.www.example.com",
		]
		assert fake_dns.records == {}

		session = conn.execute("SELECT * FROM acme_sessions").fetchone()
		assert session["mode"] == "auto"
		assert session["dns_records"] in (None, "[]")

	def test_unknown_provider(self, conn, fake_dns_ctx, account):
		with pytest.raises(ResourceNotFoundError):
			asyncio.run(IssuanceManager(fake_dns_ctx).issue(
				conn, account_id=account["id"], domains=["example.com"], key_type="P256", dns_provider_id=404,
			))

	def test_dns_auth_error_stops_before_the_ca(self, conn, cfg, fake_ca, account):
		def dns_handler(request: httpx.Request) -> httpx.Response:
			return httpx.Response(403, json={
				"success": False, "errors": [{"code": 10000, "message": "Authentication error"}],
			})

		ctx = ServiceContext(cfg, acme_transport=fake_ca.transport, dns_transport=httpx.MockTransport(dns_handler))
		provider = create_provider(
			conn, ctx, name="cf", provider_type="cloudflare", secret_id="bad-token", secret_key="zone1",
		)
		session = _open(conn, ctx, account, ["example.com"])
		with pytest.raises(DNSAuthError):
			asyncio.run(IssuanceManager(ctx).issue(
				conn, account_id=account["id"], domains=["example.com"], key_type="P256",
				session_id=session["id"], dns_provider_id=provider["id"],
			))

		assert fake_ca.answered == []
		row = _session(conn, session["id"])
		assert row["status"] == "invalid"
		assert row["error"] == "Authentication error"
		assert sqlite_certs.get_cert(conn, session["cert_id"])["cert_status"] == "not_issued"

	def test_records_removed_when_validation_fails(self, conn, fake_dns_ctx, account, fake_dns, fake_ca):
		fake_ca.authz_outcome = "invalid"
		provider = create_provider(
			conn, fake_dns_ctx, name="cf", provider_type="cloudflare", secret_id="token", secret_key="zone",
		)
		with pytest.raises(AuthorizationFailed):
			asyncio.run(IssuanceManager(fake_dns_ctx).issue(
				conn, account_id=account["id"], domains=["example.com"], key_type="P256",
				dns_provider_id=provider["id"],
			))
		assert len(fake_dns.created) == 1
		assert fake_dns.records == {}


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------

class TestSessionLifecycle:
	def test_abandon_pending_session(self, conn, ctx, account):
		session = _open(conn, ctx, account, ["example.com"])
		manager = IssuanceManager(ctx)
		result = asyncio.run(manager.abandon(session["id"]))
		assert result["status"] == "abandoned"

		with pytest.raises(StateConflictError):
			asyncio.run(manager.fulfill(session["id"], mode="manual"))
		with pytest.raises(StateConflictError):
			asyncio.run(manager.abandon(session["id"]))

	def test_abandon_running_flow(self, conn, cfg, fake_ca, account):
		fake_ca.authz_outcome = "pending"
		ctx = ServiceContext(dataclasses.replace(cfg, acme_poll_timeout=30.0), acme_transport=fake_ca.transport)
		session = _open(conn, ctx, account, ["example.com"])
		manager = IssuanceManager(ctx)

		async def run():
			task = asyncio.create_task(manager.fulfill(session["id"], mode="manual"))
			for _ in range(500):
				if manager.is_running(session["id"]):
					break
				await asyncio.sleep(0.01)
			result = await manager.abandon(session["id"])
			with pytest.raises(StateConflictError):
				await task
			return result

		assert asyncio.run(run())["status"] == "abandoned"

	def test_second_claim_conflicts(self, conn, ctx, account):
		session = _open(conn, ctx, account, ["example.com"])
		assert sqlite_sessions.claim_session(conn, session["id"], mode="manual", dns_provider_id=None)
		with pytest.raises(StateConflictError):
			asyncio.run(IssuanceManager(ctx).fulfill(session["id"], mode="manual"))

	def test_recover_fails_interrupted_sessions_and_removes_records(self, conn, fake_dns_ctx, account, fake_dns):
		provider = create_provider(
			conn, fake_dns_ctx, name="cf", provider_type="cloudflare", secret_id="token", secret_key="zone",
		)
		session = _open(conn, fake_dns_ctx, account, ["example.com"])
		sqlite_sessions.claim_session(conn, session["id"], mode="auto", dns_provider_id=provider["id"])
		fake_dns.records = {"_acme-challenge.example.com": ["leftover"]}
		handle = RecordHandle("cloudflare", "_acme-challenge.example.com", "leftover", {"n": 1})
		sqlite_sessions.update_session(conn, session["id"], dns_records=[handle.to_dict()])

		recovered = asyncio.run(IssuanceManager(fake_dns_ctx).recover())

		assert recovered == 1
		row = _session(conn, session["id"])
		assert row["status"] == "invalid"
		assert row["error"] == "interrupted"
		assert fake_dns.records == {}
