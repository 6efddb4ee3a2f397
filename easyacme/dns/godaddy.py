#!/usr/bin/env python3
#
# easyacme/dns/godaddy.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""GoDaddy adapter (Domains API v1, ``sso-key`` authentication).

GoDaddy has no record ids. Deletion rewrites the TXT set for the name
without our value, or removes the name entirely when nothing else is left.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import DNSAuthError, DNSNotFoundError, DNSProviderError, DNSRateLimitError
from .base import DNSProvider, RecordHandle, classify_http_error, relative_name, zone_candidates

_log = logging.getLogger(__name__)

API_BASE = "https://api.godaddy.com"
# Minimum TTL accepted by the API
TTL = 600


class GoDaddyProvider(DNSProvider):
	vendor = "godaddy"

	def __init__(self, *args: Any, **kwargs: Any) -> None:
		super().__init__(*args, **kwargs)
		self._zone_cache: dict[str, str] = {}

	def _headers(self) -> dict[str, str]:
		return {
			"Authorization": f"sso-key {self.secret_id}:{self.secret_key}",
			"Accept": "application/json",
			"Content-Type": "application/json",
		}

	def _error(self, resp: httpx.Response) -> DNSProviderError:
		try:
			body = resp.json()
		except ValueError:
			body = {}
		code = str(body.get("code") or resp.status_code) if isinstance(body, dict) else str(resp.status_code)
		message = str(body.get("message") if isinstance(body, dict) else "") or f"HTTP {resp.status_code}"
		if code in ("UNABLE_TO_AUTHENTICATE", "ACCESS_DENIED"):
			return DNSAuthError(message, vendor=self.vendor, vendor_code=code)
		if code == "TOO_MANY_REQUESTS":
			return DNSRateLimitError(message, vendor=self.vendor, vendor_code=code)
		if code in ("NOT_FOUND", "UNKNOWN_DOMAIN"):
			return DNSNotFoundError(message, vendor=self.vendor, vendor_code=code)
		return classify_http_error(self.vendor, resp.status_code, message, code)

	async def _call(self, client: httpx.AsyncClient, method: str, path: str, **kwargs: Any) -> Any:
		resp = await self._send(client, method, f"{API_BASE}{path}", headers=self._headers(), **kwargs)
		if resp.status_code >= 400:
			raise self._error(resp)
		if not resp.content:
			return None
		return resp.json()

	async def _find_zone(self, client: httpx.AsyncClient, fqdn: str) -> str:
		if fqdn in self._zone_cache:
			return self._zone_cache[fqdn]
		for candidate in zone_candidates(fqdn):
			try:
				await self._call(client, "GET", f"/v1/domains/{candidate}")
			except DNSNotFoundError:
				continue
			except DNSProviderError as exc:
				# Sub-names of a registered domain answer 422
				if exc.vendor_code in ("422", "INVALID_BODY"):
					continue
				raise
			self._zone_cache[fqdn] = candidate
			return candidate
		raise DNSNotFoundError(f"No GoDaddy domain found for {fqdn}", vendor=self.vendor, vendor_code="zone_not_found")

	async def _txt_records(self, client: httpx.AsyncClient, zone: str, name: str) -> list[dict]:
		records = await self._call(client, "GET", f"/v1/domains/{zone}/records/TXT/{name}")
		return list(records or [])

	async def _create(self, fqdn: str, value: str) -> dict:
		self._require_credentials()
		async with self._http() as client:
			zone = await self._find_zone(client, fqdn)
			name = relative_name(fqdn, zone)
			existing = await self._txt_records(client, zone, name)
			if not any(r.get("data") == value for r in existing):
				await self._call(
					client, "PATCH", f"/v1/domains/{zone}/records",
					json=[{"type": "TXT", "name": name, "data": value, "ttl": TTL}],
				)
		return {"zone": zone, "name": name}

	async def _delete(self, handle: RecordHandle) -> None:
		zone, name = handle.data["zone"], handle.data["name"]
		async with self._http() as client:
			existing = await self._txt_records(client, zone, name)
			remaining = [r for r in existing if r.get("data") != handle.value]
			if len(remaining) == len(existing):
				raise DNSNotFoundError("TXT value no longer present", vendor=self.vendor)
			if remaining:
				await self._call(
					client, "PUT", f"/v1/domains/{zone}/records/TXT/{name}",
					json=[{"data": r["data"], "ttl": r.get("ttl", TTL)} for r in remaining],
				)
			else:
				await self._call(client, "DELETE", f"/v1/domains/{zone}/records/TXT/{name}")
