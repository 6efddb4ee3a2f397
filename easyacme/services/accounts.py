#!/usr/bin/env python3
#
# easyacme/services/accounts.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""ACME account registration, deactivation and bookkeeping."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Any

from ..acme import keys
from ..db import sqlite_accounts, sqlite_certs, sqlite_sessions
from ..db.sqlite_runtime import transaction
from ..errors import ResourceNotFoundError, StateConflictError, ValidationError
from ..utils.time import to_iso
from .context import ServiceContext

_log = logging.getLogger(__name__)

ACCOUNT_STATUSES = ("valid", "deactivated", "revoked")


def account_to_dict(row: sqlite3.Row) -> dict[str, Any]:
	"""Public view of an account. The key reference is never exposed."""
	return {
		"id": row["id"],
		"name": row["name"],
		"key_type": row["key_type"],
		"server": row["server"],
		"email": row["email"],
		"uri": row["uri"],
		"status": row["status"],
		"eab_key_id": row["eab_key_id"],
		"created_at": to_iso(row["created_at"]),
		"updated_at": to_iso(row["updated_at"]),
	}


def get_account_or_404(conn: sqlite3.Connection, account_id: int) -> sqlite3.Row:
	row = sqlite_accounts.get_account(conn, account_id)
	if row is None:
		raise ResourceNotFoundError(f"ACME account {account_id} not found")
	return row


def load_account_key(ctx: ServiceContext, conn: sqlite3.Connection, row: sqlite3.Row) -> keys.PrivateKey:
	return keys.load_private_key(ctx.secret_store(conn).get(row["private_key_ref"]))


async def register_account(
	conn: sqlite3.Connection,
	ctx: ServiceContext,
	*,
	name: str,
	key_type: str,
	server: str,
	email: str,
	eab_kid: str | None = None,
	eab_hmac_key: str | None = None,
) -> sqlite3.Row:
	"""Generate an account key, register it with the CA and persist the account.

	Nothing is written unless the CA accepted the registration.
	"""
	if key_type not in keys.KEY_TYPES:
		raise ValidationError(f"Unsupported key type {key_type!r}", allowed=list(keys.KEY_TYPES))
	if bool(eab_kid) != bool(eab_hmac_key):
		raise ValidationError("External account binding needs both eab_kid and eab_hmac_key")

	# RSA 8192 generation takes seconds; keep it off the event loop
	account_key = await asyncio.to_thread(keys.generate_private_key, key_type)
	async with ctx.acme_client(server, account_key) as client:
		account_url, account = await client.register(email, eab_kid=eab_kid, eab_hmac_key=eab_hmac_key)

	store = ctx.secret_store(conn)
	with transaction(conn, immediate=True):
		key_ref = store.put(keys.private_key_to_pem(account_key))
		account_id = sqlite_accounts.create_account(
			conn,
			name=name,
			key_type=key_type,
			private_key_ref=key_ref,
			server=server,
			email=email,
			uri=account_url,
			status=account.get("status") or "valid",
			eab_key_id=eab_kid or None,
		)
	_log.info("ACCOUNT_REGISTERED id=%s key_type=%s server=%s eab=%s", account_id, key_type, server, bool(eab_kid))
	return sqlite_accounts.get_account(conn, account_id)


async def deactivate_account(conn: sqlite3.Connection, ctx: ServiceContext, account_id: int) -> sqlite3.Row:
	row = get_account_or_404(conn, account_id)
	if row["status"] != "valid":
		raise StateConflictError(f"Account {account_id} is {row['status']}, only valid accounts can be deactivated")

	account_key = load_account_key(ctx, conn, row)
	async with ctx.acme_client(row["server"], account_key, account_url=row["uri"]) as client:
		await client.deactivate()

	if not sqlite_accounts.set_account_status(conn, account_id, "deactivated", expected="valid"):
		raise StateConflictError(f"Account {account_id} changed state during deactivation")
	_log.info("ACCOUNT_DEACTIVATED id=%s", account_id)
	return sqlite_accounts.get_account(conn, account_id)


def delete_account(conn: sqlite3.Connection, ctx: ServiceContext, account_id: int) -> None:
	"""Delete an account with no issued, expired or revoked certificates."""
	store = ctx.secret_store(conn)
	with transaction(conn, immediate=True):
		row = get_account_or_404(conn, account_id)
		issued = sqlite_certs.count_certs_for_account(conn, account_id, issued_only=True)
		if issued:
			raise StateConflictError(
				f"Account {account_id} still has {issued} certificate(s); delete them first",
				certificates=issued,
			)
		if sqlite_sessions.count_active_sessions(conn, account_id):
			raise StateConflictError(f"Account {account_id} has an issuance in progress")
		sqlite_certs.delete_unissued_for_account(conn, account_id)
		sqlite_accounts.delete_account(conn, account_id)
		store.delete(row["private_key_ref"])
	_log.info("ACCOUNT_DELETED id=%s", account_id)
