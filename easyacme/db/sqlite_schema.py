#!/usr/bin/env python3
#
# easyacme/db/sqlite_schema.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SQLite schema initialization and bootstrap routines."""

from __future__ import annotations

import logging
import sqlite3

from ..utils.crypto import hash_token
from ..utils.time import utcnow
from .sqlite_runtime import dumps, transaction

_log = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Schema Initialization
# ─────────────────────────────────────────────────────────────────────────────


def init_schema(conn: sqlite3.Connection) -> None:
	"""Create the database schema (idempotent)."""
	with transaction(conn, immediate=True):
		# Encrypted secret material, addressed by opaque ref
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS secrets (
				id TEXT PRIMARY KEY,
				ciphertext TEXT NOT NULL,
				created_at timestamp NOT NULL
			)
			"""
		)

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS acme_accounts (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				name TEXT NOT NULL,
				key_type TEXT NOT NULL,
				private_key_ref TEXT NOT NULL,
				server TEXT NOT NULL,
				email TEXT NOT NULL,
				uri TEXT NOT NULL,
				status TEXT NOT NULL DEFAULT 'valid',
				eab_key_id TEXT,
				created_at timestamp NOT NULL,
				updated_at timestamp NOT NULL
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_acme_accounts_status ON acme_accounts(status)")

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS dns_providers (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				name TEXT NOT NULL,
				type TEXT NOT NULL,
				secret_id TEXT NOT NULL,
				secret_key_ref TEXT NOT NULL,
				notes TEXT NOT NULL DEFAULT '',
				created_at timestamp NOT NULL,
				updated_at timestamp NOT NULL
			)
			"""
		)

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS acme_certs (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				account_id INTEGER NOT NULL,
				dns_provider_id INTEGER,
				domains TEXT NOT NULL,
				key_type TEXT NOT NULL,
				cert_type TEXT,
				cert_status TEXT NOT NULL DEFAULT 'not_issued',
				issued_at timestamp,
				validity_days INTEGER,
				certificate TEXT,
				issuer_certificate TEXT,
				csr TEXT,
				private_key_ref TEXT,
				cert_url TEXT,
				cert_stable_url TEXT,
				version INTEGER NOT NULL DEFAULT 1,
				created_at timestamp NOT NULL,
				updated_at timestamp NOT NULL,
				FOREIGN KEY(account_id) REFERENCES acme_accounts(id) ON DELETE RESTRICT,
				FOREIGN KEY(dns_provider_id) REFERENCES dns_providers(id) ON DELETE SET NULL
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_acme_certs_account ON acme_certs(account_id)")
		conn.execute("CREATE INDEX IF NOT EXISTS idx_acme_certs_status ON acme_certs(cert_status)")

		# Authorization sessions bridging /acme/auth and /acme/auth/cert
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS acme_sessions (
				id TEXT PRIMARY KEY,
				account_id INTEGER NOT NULL,
				cert_id INTEGER,
				domains TEXT NOT NULL,
				key_type TEXT NOT NULL,
				order_url TEXT NOT NULL,
				finalize_url TEXT NOT NULL,
				authorizations TEXT NOT NULL,
				mode TEXT,
				dns_provider_id INTEGER,
				dns_records TEXT NOT NULL DEFAULT '[]',
				status TEXT NOT NULL DEFAULT 'pending',
				error TEXT,
				expires_at timestamp NOT NULL,
				created_at timestamp NOT NULL,
				updated_at timestamp NOT NULL,
				FOREIGN KEY(account_id) REFERENCES acme_accounts(id) ON DELETE CASCADE,
				FOREIGN KEY(cert_id) REFERENCES acme_certs(id) ON DELETE SET NULL
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_acme_sessions_status ON acme_sessions(status)")
		conn.execute("CREATE INDEX IF NOT EXISTS idx_acme_sessions_expires ON acme_sessions(expires_at)")

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS api_tokens (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				name TEXT NOT NULL,
				token_hash TEXT NOT NULL UNIQUE,
				permissions TEXT NOT NULL,
				last_used_at timestamp,
				created_at timestamp NOT NULL
			)
			"""
		)


def ensure_admin_token(conn: sqlite3.Connection, token: str) -> bool:
	"""Install the bootstrap token from the environment with all permissions.

	Returns True if a new token row was created.
	"""
	if not token:
		return False
	try:
		with transaction(conn, immediate=True):
			conn.execute(
				"""
				INSERT INTO api_tokens (name, token_hash, permissions, created_at)
				VALUES ('bootstrap', ?, ?, ?)
				""",
				(hash_token(token), dumps(["*"]), utcnow()),
			)
	except sqlite3.IntegrityError:
		return False
	_log.info("API_TOKEN_BOOTSTRAPPED name=bootstrap")
	return True
