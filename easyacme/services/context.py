#!/usr/bin/env python3
#
# easyacme/services/context.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Process-wide runtime handles shared by the services."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from ..acme import keys
from ..acme.client import ACMEClient
from ..db.sqlite_runtime import connect
from ..dns.base import DNSProvider
from ..dns.registry import build_provider
from ..utils.config import Config
from ..utils.vault import SecretStore


@dataclass
class ServiceContext:
	"""Configuration plus factories for outbound clients.

	Tests swap the transports (``httpx.MockTransport``) or the DNS factory
	to run the whole issuance flow offline.
	"""
	cfg: Config
	acme_transport: Optional[httpx.AsyncBaseTransport] = None
	dns_transport: Optional[httpx.AsyncBaseTransport] = None
	dns_factory: Callable[..., DNSProvider] = field(default=build_provider)

	def connect(self) -> sqlite3.Connection:
		return connect(self.cfg.db_path)

	def secret_store(self, conn: sqlite3.Connection) -> SecretStore:
		return SecretStore(conn, self.cfg.secret_key)

	def acme_client(
		self,
		server: str,
		account_key: keys.PrivateKey,
		*,
		account_url: Optional[str] = None,
	) -> ACMEClient:
		return ACMEClient(
			server,
			account_key,
			account_url=account_url,
			timeout=self.cfg.http_timeout,
			poll_max_interval=self.cfg.acme_poll_max_interval,
			transport=self.acme_transport,
		)

	def dns_provider(self, provider_type: str, secret_id: str, secret_key: str, **extra: Any) -> DNSProvider:
		return self.dns_factory(
			provider_type,
			secret_id,
			secret_key,
			timeout=self.cfg.http_timeout,
			retry_attempts=self.cfg.dns_retry_attempts,
			transport=self.dns_transport,
			**extra,
		)
