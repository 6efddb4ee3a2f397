"""Shared fixtures for the easyacme test suite."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from easyacme.db.sqlite_runtime import close_connection, connect
from easyacme.db.sqlite_schema import init_schema
from easyacme.dns.base import DNSProvider, RecordHandle
from easyacme.services.accounts import register_account
from easyacme.services.context import ServiceContext
from easyacme.utils import vault
from easyacme.utils.config import Config, reset_config
from easyacme.utils.rate_limit import limiter

from fake_ca import DIRECTORY_URL, FakeCA

ADMIN_TOKEN = "admin-test-token"
PEPPER = "test-pepper-not-for-production"


# ---------------------------------------------------------------------------
# Global speed-ups
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def fast_kdf(monkeypatch):
	"""PBKDF2 at production strength makes every secret write take ~0.5s."""
	monkeypatch.setattr(vault, "KDF_ITERATIONS", 1_000)


@pytest.fixture(autouse=True)
def no_dns_backoff(monkeypatch):
	monkeypatch.setattr(DNSProvider, "retry_base_delay", 0.0)


@pytest.fixture(autouse=True)
def no_rate_limits():
	limiter.enabled = False
	yield
	limiter.enabled = True


# ---------------------------------------------------------------------------
# Config, database and service context
# ---------------------------------------------------------------------------

@pytest.fixture()
def cfg(tmp_path: Path) -> Config:
	return Config(
		base_dir=tmp_path,
		data_dir=tmp_path,
		db_path=tmp_path / "easyacme.db",
		secret_key=PEPPER,
		acme_poll_timeout=10.0,
		dns_propagation_check=False,
		dns_propagation_delay=0.0,
		dns_retry_attempts=3,
		issuance_timeout=30.0,
	)


@pytest.fixture()
def conn(cfg: Config):
	c = connect(cfg.db_path)
	init_schema(c)
	yield c
	close_connection(c)


@pytest.fixture()
def fake_ca() -> FakeCA:
	return FakeCA()


class FakeDNS(DNSProvider):
	"""Adapter that keeps records in memory; shared across instances."""

	vendor = "cloudflare"
	records: dict[str, list[str]] = {}
	created: list[tuple[str, str]] = []
	fail_create: Exception | None = None

	async def _create(self, fqdn: str, value: str) -> dict:
		if FakeDNS.fail_create is not None:
			raise FakeDNS.fail_create
		FakeDNS.records.setdefault(fqdn, []).append(value)
		FakeDNS.created.append((fqdn, value))
		return {"n": len(FakeDNS.records[fqdn])}

	async def _delete(self, handle: RecordHandle) -> None:
		FakeDNS.records.get(handle.fqdn, []).remove(handle.value)
		if not FakeDNS.records.get(handle.fqdn):
			FakeDNS.records.pop(handle.fqdn, None)


@pytest.fixture()
def fake_dns():
	FakeDNS.records = {}
	FakeDNS.created = []
	FakeDNS.fail_create = None
	yield FakeDNS
	FakeDNS.records = {}
	FakeDNS.created = []
	FakeDNS.fail_create = None


@pytest.fixture()
def ctx(cfg: Config, fake_ca: FakeCA) -> ServiceContext:
	return ServiceContext(cfg, acme_transport=fake_ca.transport)


@pytest.fixture()
def fake_dns_ctx(cfg: Config, fake_ca: FakeCA, fake_dns) -> ServiceContext:
	"""Context whose DNS factory hands out ``FakeDNS`` for every vendor."""

	def _factory(provider_type, secret_id, secret_key, **kwargs):
		return fake_dns(secret_id, secret_key, **kwargs)

	return ServiceContext(cfg, acme_transport=fake_ca.transport, dns_factory=_factory)


@pytest.fixture()
def account(conn, ctx):
	"""A registered P-256 account on the fake CA."""
	return asyncio.run(register_account(
		conn, ctx, name="primary", key_type="P256", server=DIRECTORY_URL, email="ops@example.com",
	))


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------

@pytest.fixture()
def api(tmp_path: Path, monkeypatch, fake_ca: FakeCA):
	"""TestClient on a fresh app whose ACME traffic goes to ``fake_ca``."""
	monkeypatch.setenv("EASYACME_DATA_DIR", str(tmp_path))
	monkeypatch.setenv("EASYACME_SECRET_KEY", PEPPER)
	monkeypatch.setenv("EASYACME_ADMIN_TOKEN", ADMIN_TOKEN)
	monkeypatch.setenv("EASYACME_DNS_PROPAGATION_CHECK", "false")
	monkeypatch.setenv("EASYACME_DNS_PROPAGATION_DELAY", "0")
	reset_config()

	from easyacme import create_app

	app = create_app()
	with TestClient(app) as client:
		app.state.ctx.acme_transport = fake_ca.transport
		client.headers["Authorization"] = f"Bearer {ADMIN_TOKEN}"
		yield client
	reset_config()
