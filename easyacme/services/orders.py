#!/usr/bin/env python3
#
# easyacme/services/orders.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Order creation: domain normalization, ACME newOrder and session bookkeeping."""

from __future__ import annotations

import logging
import re
import sqlite3
from datetime import timedelta
from typing import Any, Iterable

import idna

from ..acme import keys
from ..db import sqlite_certs, sqlite_sessions
from ..db.sqlite_runtime import loads, transaction
from ..errors import (
	InvalidDomainError,
	OrderError,
	ResourceNotFoundError,
	StateConflictError,
	ValidationError,
)
from ..utils.crypto import new_id
from ..utils.time import parse_utc, to_iso, utcnow
from .accounts import get_account_or_404, load_account_key
from .context import ServiceContext

_log = logging.getLogger(__name__)

# Let's Encrypt accepts at most 100 names per certificate
MAX_DOMAINS = 100

_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")


# ---------------------------------------------------------------------------
# Domain normalization
# ---------------------------------------------------------------------------

def normalize_domain(raw: str) -> str:
	"""Lower-case, strip and IDNA-encode one name. ``*.`` is allowed leftmost only."""
	name = (raw or "").strip().lower().rstrip(".")
	if not name:
		raise InvalidDomainError(raw, "empty name")
	wildcard = name.startswith("*.")
	base = name[2:] if wildcard else name
	if "*" in base:
		raise InvalidDomainError(raw, "a wildcard is only allowed as the leftmost label")

	try:
		ascii_name = idna.encode(base, uts46=True).decode("ascii")
	except idna.IDNAError as exc:
		raise InvalidDomainError(raw, str(exc)) from None

	if len(ascii_name) > 253:
		raise InvalidDomainError(raw, "longer than 253 characters")
	labels = ascii_name.split(".")
	if len(labels) < 2:
		raise InvalidDomainError(raw, "must contain at least two labels")
	for label in labels:
		if not _LABEL_RE.match(label):
			raise InvalidDomainError(raw, f"invalid label {label!r}")
	if labels[-1].isdigit():
		raise InvalidDomainError(raw, "IP addresses are not supported")
	return f"*.{ascii_name}" if wildcard else ascii_name


def normalize_domains(domains: Iterable[str]) -> list[str]:
	"""Normalize and de-duplicate, keeping the caller's order."""
	result: list[str] = []
	for raw in domains:
		name = normalize_domain(raw)
		if name not in result:
			result.append(name)
	if not result:
		raise ValidationError("At least one domain is required")
	if len(result) > MAX_DOMAINS:
		raise ValidationError(f"At most {MAX_DOMAINS} domains per certificate", count=len(result))
	return result


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

def session_to_dict(row: sqlite3.Row) -> dict[str, Any]:
	"""Session as returned to API callers, including the TXT records to publish."""
	authorizations = loads(row["authorizations"], [])
	return {
		"id": row["id"],
		"account_id": row["account_id"],
		"cert_id": row["cert_id"],
		"domains": loads(row["domains"], []),
		"key_type": row["key_type"],
		"mode": row["mode"],
		"dns_provider_id": row["dns_provider_id"],
		"status": row["status"],
		"error": row["error"],
		"expires_at": to_iso(row["expires_at"]),
		"created_at": to_iso(row["created_at"]),
		"info_list": [
			{
				"domain": a["domain"],
				"EffectiveFQDN": a["fqdn"],
				"Value": a["value"],
				"token": a["token"],
				"status": a["status"],
			}
			for a in authorizations
		],
	}


def get_session_or_404(conn: sqlite3.Connection, session_id: str) -> sqlite3.Row:
	row = sqlite_sessions.get_session(conn, session_id)
	if row is None:
		raise ResourceNotFoundError(f"Authorization session {session_id} not found")
	return row


def _dns01_authorization(authz: dict, url: str, client) -> dict:
	identifier = authz.get("identifier", {}).get("value", "")
	domain = f"*.{identifier}" if authz.get("wildcard") else identifier
	challenge = next((c for c in authz.get("challenges", []) if c.get("type") == "dns-01"), None)
	if challenge is None:
		raise OrderError(f"CA offered no dns-01 challenge for {domain}")
	challenge_url, token = challenge.get("url"), challenge.get("token")
	if not isinstance(challenge_url, str) or not isinstance(token, str) or not token:
		raise OrderError(f"CA returned a malformed dns-01 challenge for {domain} ({url})")
	return {
		"domain": domain,
		"url": url,
		"challenge_url": challenge_url,
		"token": token,
		"fqdn": keys.challenge_fqdn(domain),
		"value": client.dns01_value(token),
		"status": authz.get("status", "pending"),
	}


async def create_order(
	conn: sqlite3.Connection,
	ctx: ServiceContext,
	*,
	account_id: int,
	domains: list[str],
	key_type: str,
) -> dict[str, Any]:
	"""Open an ACME order and return the DNS-01 values to publish.

	All input validation happens before the CA is contacted.
	"""
	names = normalize_domains(domains)
	if key_type not in keys.KEY_TYPES:
		raise ValidationError(f"Unsupported key type {key_type!r}", allowed=list(keys.KEY_TYPES))
	account = get_account_or_404(conn, account_id)
	if account["status"] != "valid":
		raise StateConflictError(f"Account {account_id} is {account['status']}; new orders are refused")

	account_key = load_account_key(ctx, conn, account)
	async with ctx.acme_client(account["server"], account_key, account_url=account["uri"]) as client:
		order_url, order = await client.new_order(names)
		authorizations = []
		for url in order["authorizations"]:
			authz = await client.get_authorization(url)
			authorizations.append(_dns01_authorization(authz, url, client))

	position = {name: i for i, name in enumerate(names)}
	authorizations.sort(key=lambda a: position.get(a["domain"], len(names)))

	now = utcnow()
	expires_at = now + timedelta(seconds=ctx.cfg.session_ttl)
	order_expires = parse_utc(order.get("expires"))
	if order_expires is not None and order_expires < expires_at:
		expires_at = order_expires

	session_id = new_id("sess")
	with transaction(conn, immediate=True):
		cert_id = sqlite_certs.create_cert(conn, account_id=account_id, domains=names, key_type=key_type)
		sqlite_sessions.create_session(
			conn,
			session_id=session_id,
			account_id=account_id,
			cert_id=cert_id,
			domains=names,
			key_type=key_type,
			order_url=order_url,
			finalize_url=order["finalize"],
			authorizations=authorizations,
			expires_at=expires_at,
		)
	_log.info(
		"ORDER_CREATED session=%s cert_id=%s account_id=%s domains=%s",
		session_id, cert_id, account_id, ",".join(names),
	)
	return session_to_dict(sqlite_sessions.get_session(conn, session_id))
