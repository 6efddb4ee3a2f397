#!/usr/bin/env python3
#
# easyacme/services/dns_providers.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""DNS vendor credential management. Secret keys live in the secret store."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Iterable, Optional

from ..db import sqlite_dns
from ..db.sqlite_runtime import UNSET, transaction
from ..dns.registry import OPTIONAL_SECRET_KEY, PROVIDER_TYPES
from ..errors import ResourceNotFoundError, ValidationError
from ..utils.time import to_iso
from .context import ServiceContext

_log = logging.getLogger(__name__)


def provider_to_dict(row: sqlite3.Row) -> dict[str, Any]:
	"""Credential as listed. The secret key is never part of it."""
	return {
		"id": row["id"],
		"name": row["name"],
		"type": row["type"],
		"secret_id": row["secret_id"],
		"notes": row["notes"],
		"created_at": to_iso(row["created_at"]),
		"updated_at": to_iso(row["updated_at"]),
	}


def _check_type(provider_type: str) -> None:
	if provider_type not in PROVIDER_TYPES:
		raise ValidationError(f"Unsupported DNS provider type {provider_type!r}", allowed=list(PROVIDER_TYPES))


def get_provider_or_404(conn: sqlite3.Connection, provider_id: int) -> sqlite3.Row:
	row = sqlite_dns.get_provider(conn, provider_id)
	if row is None:
		raise ResourceNotFoundError(f"DNS provider {provider_id} not found")
	return row


def create_provider(
	conn: sqlite3.Connection,
	ctx: ServiceContext,
	*,
	name: str,
	provider_type: str,
	secret_id: str,
	secret_key: str,
	notes: str = "",
) -> sqlite3.Row:
	_check_type(provider_type)
	if not secret_id.strip():
		raise ValidationError("secret_id is required")
	if not secret_key.strip() and provider_type not in OPTIONAL_SECRET_KEY:
		raise ValidationError(f"secret_key is required for {provider_type}")

	store = ctx.secret_store(conn)
	with transaction(conn, immediate=True):
		ref = store.put(secret_key.strip())
		provider_id = sqlite_dns.create_provider(
			conn,
			name=name,
			type=provider_type,
			secret_id=secret_id.strip(),
			secret_key_ref=ref,
			notes=notes,
		)
	_log.info("DNS_PROVIDER_CREATED id=%s type=%s", provider_id, provider_type)
	return sqlite_dns.get_provider(conn, provider_id)


def update_provider(
	conn: sqlite3.Connection,
	ctx: ServiceContext,
	provider_id: int,
	*,
	name: Optional[str] = None,
	provider_type: Optional[str] = None,
	secret_id: Optional[str] = None,
	secret_key: Optional[str] = None,
	notes: Optional[str] = None,
) -> sqlite3.Row:
	"""Update the given fields. A new secret key replaces the stored one."""
	if provider_type is not None:
		_check_type(provider_type)
	if secret_id is not None and not secret_id.strip():
		raise ValidationError("secret_id must not be empty")

	store = ctx.secret_store(conn)
	with transaction(conn, immediate=True):
		row = get_provider_or_404(conn, provider_id)
		new_ref = UNSET
		if secret_key is not None:
			new_ref = store.put(secret_key.strip())
		sqlite_dns.update_provider(
			conn,
			provider_id,
			name=name if name is not None else UNSET,
			type=provider_type if provider_type is not None else UNSET,
			secret_id=secret_id.strip() if secret_id is not None else UNSET,
			secret_key_ref=new_ref,
			notes=notes if notes is not None else UNSET,
		)
		if new_ref is not UNSET:
			store.delete(row["secret_key_ref"])
	_log.info("DNS_PROVIDER_UPDATED id=%s secret_rotated=%s", provider_id, secret_key is not None)
	return sqlite_dns.get_provider(conn, provider_id)


def delete_providers(conn: sqlite3.Connection, ctx: ServiceContext, provider_ids: Iterable[int]) -> int:
	"""Delete credentials and their secrets. Certificates keep a NULL reference."""
	ids = list(dict.fromkeys(provider_ids))
	store = ctx.secret_store(conn)
	with transaction(conn, immediate=True):
		rows = sqlite_dns.get_providers_by_ids(conn, ids)
		missing = set(ids) - {row["id"] for row in rows}
		if missing:
			raise ResourceNotFoundError(
				f"DNS provider(s) not found: {', '.join(str(i) for i in sorted(missing))}",
				missing=sorted(missing),
			)
		for row in rows:
			sqlite_dns.delete_provider(conn, row["id"])
			store.delete(row["secret_key_ref"])
	_log.info("DNS_PROVIDERS_DELETED ids=%s", ",".join(str(i) for i in ids))
	return len(rows)


def reveal_secrets(conn: sqlite3.Connection, ctx: ServiceContext, provider_id: int) -> dict[str, str]:
	row = get_provider_or_404(conn, provider_id)
	secret_key = ctx.secret_store(conn).get(row["secret_key_ref"])
	_log.info("DNS_PROVIDER_SECRET_READ id=%s", provider_id)
	return {"secret_id": row["secret_id"], "secret_key": secret_key}
