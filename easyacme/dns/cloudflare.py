#!/usr/bin/env python3
#
# easyacme/dns/cloudflare.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Cloudflare adapter (API v4, scoped API token).

Credential: ``secret_id`` is the API token, ``secret_key`` the zone id. When
the zone id is left empty the zone is looked up by name, which needs the
token to carry Zone:Read in addition to Zone:DNS:Edit.
"""

from __future__ import annotations

import logging

import httpx

from ..errors import DNSAuthError, DNSNotFoundError, DNSProviderError, DNSRateLimitError
from .base import DNSProvider, RecordHandle, classify_http_error, zone_candidates

_log = logging.getLogger(__name__)

API_BASE = "https://api.cloudflare.com/client/v4"

# Token missing, malformed, expired or without permission
_AUTH_CODES = {6003, 6111, 9103, 9106, 9109, 10000, 10001}
_RATE_LIMIT_CODES = {971, 10100}
_NOT_FOUND_CODES = {81044, 7003, 1001}
_DUPLICATE_CODES = {81057, 81058}


class CloudflareProvider(DNSProvider):
	vendor = "cloudflare"
	ttl = 120

	def _headers(self) -> dict[str, str]:
		return {"Authorization": f"Bearer {self.secret_id}", "Content-Type": "application/json"}

	def _error(self, resp: httpx.Response) -> DNSProviderError:
		try:
			body = resp.json()
		except ValueError:
			body = {}
		errors = (body.get("errors") if isinstance(body, dict) else None) or []
		first = errors[0] if errors else {}
		code = first.get("code")
		message = first.get("message") or resp.text[:200] or f"HTTP {resp.status_code}"
		# Error 1009 means the token lacks Zone:DNS:Edit on this zone
		if code == 1009:
			message = f"{message} (does the API token have Zone:DNS:Edit permission?)"
		vendor_code = str(code) if code is not None else str(resp.status_code)
		if code in _AUTH_CODES:
			return DNSAuthError(message, vendor=self.vendor, vendor_code=vendor_code)
		if code in _RATE_LIMIT_CODES:
			return DNSRateLimitError(message, vendor=self.vendor, vendor_code=vendor_code)
		if code in _NOT_FOUND_CODES:
			return DNSNotFoundError(message, vendor=self.vendor, vendor_code=vendor_code)
		return classify_http_error(self.vendor, resp.status_code, message, vendor_code)

	async def _call(self, client: httpx.AsyncClient, method: str, path: str, **kwargs) -> dict:
		resp = await self._send(client, method, f"{API_BASE}{path}", headers=self._headers(), **kwargs)
		if resp.status_code >= 400:
			raise self._error(resp)
		try:
			body = resp.json()
		except ValueError as exc:
			raise DNSProviderError(
				f"Malformed response to {method} {path}", vendor=self.vendor, vendor_code="malformed_response",
			) from exc
		if not isinstance(body, dict) or not body.get("success", False):
			raise self._error(resp)
		return body

	async def _zone_id(self, client: httpx.AsyncClient, fqdn: str) -> str:
		if self.secret_key:
			return self.secret_key
		for candidate in zone_candidates(fqdn):
			body = await self._call(client, "GET", "/zones", params={"name": candidate, "status": "active"})
			if body.get("result"):
				return body["result"][0]["id"]
		raise DNSNotFoundError(
			f"No Cloudflare zone found for {fqdn}; set the zone id on the credential",
			vendor=self.vendor,
			vendor_code="zone_not_found",
		)

	async def _create(self, fqdn: str, value: str) -> dict:
		self._require_credentials(key_required=False)
		async with self._http() as client:
			zone_id = await self._zone_id(client, fqdn)
			try:
				body = await self._call(
					client, "POST", f"/zones/{zone_id}/dns_records",
					json={"type": "TXT", "name": fqdn, "content": value, "ttl": self.ttl},
				)
				record_id = body["result"]["id"]
			except DNSProviderError as exc:
				if exc.vendor_code not in {str(c) for c in _DUPLICATE_CODES}:
					raise
				# Identical record already present, adopt it
				body = await self._call(
					client, "GET", f"/zones/{zone_id}/dns_records",
					params={"type": "TXT", "name": fqdn, "content": value},
				)
				if not body.get("result"):
					raise
				record_id = body["result"][0]["id"]
		return {"zone_id": zone_id, "record_id": record_id}

	async def _delete(self, handle: RecordHandle) -> None:
		zone_id = handle.data.get("zone_id")
		record_id = handle.data.get("record_id")
		if not zone_id or not record_id:
			raise DNSNotFoundError("Record handle has no id", vendor=self.vendor)
		async with self._http() as client:
			await self._call(client, "DELETE", f"/zones/{zone_id}/dns_records/{record_id}")
