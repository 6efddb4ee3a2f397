#!/usr/bin/env python3
#
# easyacme/dns/baiducloud.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Baidu AI Cloud DNS adapter (``bce-auth-v1`` signing)."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote, urlencode

import httpx

from ..errors import DNSAuthError, DNSNotFoundError, DNSProviderError, DNSRateLimitError
from .base import DNSProvider, RecordHandle, best_zone, classify_http_error, relative_name

_log = logging.getLogger(__name__)

HOST = "dns.baidubce.com"
EXPIRATION_SECONDS = 1800

_AUTH_CODES = {"AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch", "RequestExpired", "InvalidHTTPAuthHeader"}


def _uri_encode(value: str, safe: str = "") -> str:
	return quote(str(value), safe="-_.~" + safe)


def bce_authorization(
	access_key: str,
	secret_key: str,
	method: str,
	path: str,
	query: dict[str, str],
	headers: dict[str, str],
	timestamp: str,
) -> str:
	"""Authorization header value; ``headers`` are the headers to sign."""
	auth_prefix = f"bce-auth-v1/{access_key}/{timestamp}/{EXPIRATION_SECONDS}"
	signing_key = hmac.new(secret_key.encode("utf-8"), auth_prefix.encode("utf-8"), hashlib.sha256).hexdigest()
	canonical_query = "&".join(
		sorted(f"{_uri_encode(k)}={_uri_encode(v)}" for k, v in query.items() if k.lower() != "authorization")
	)
	lowered = {k.lower(): v.strip() for k, v in headers.items()}
	canonical_headers = "\n".join(sorted(f"{_uri_encode(k)}:{_uri_encode(v)}" for k, v in lowered.items()))
	canonical_request = "\n".join([method.upper(), _uri_encode(path, "/"), canonical_query, canonical_headers])
	signature = hmac.new(signing_key.encode("utf-8"), canonical_request.encode("utf-8"), hashlib.sha256).hexdigest()
	return f"{auth_prefix}/{';'.join(sorted(lowered))}/{signature}"


class BaiduCloudProvider(DNSProvider):
	vendor = "baiducloud"

	def __init__(self, *args: Any, **kwargs: Any) -> None:
		super().__init__(*args, **kwargs)
		self._zones: list[str] | None = None

	def _error(self, resp: httpx.Response) -> DNSProviderError:
		try:
			body = resp.json()
		except ValueError:
			body = {}
		code = str(body.get("code") or resp.status_code)
		message = str(body.get("message") or resp.text[:200] or f"HTTP {resp.status_code}")
		if code in _AUTH_CODES:
			return DNSAuthError(message, vendor=self.vendor, vendor_code=code)
		if code == "RequestRateLimitExceeded":
			return DNSRateLimitError(message, vendor=self.vendor, vendor_code=code)
		if code.startswith("NoSuch") or code.endswith("NotExist"):
			return DNSNotFoundError(message, vendor=self.vendor, vendor_code=code)
		return classify_http_error(self.vendor, resp.status_code, message, code)

	async def _call(
		self,
		client: httpx.AsyncClient,
		method: str,
		path: str,
		*,
		query: Optional[dict[str, str]] = None,
		payload: Optional[dict] = None,
	) -> dict:
		query = query or {}
		timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
		body = json.dumps(payload).encode("utf-8") if payload is not None else b""
		signed = {"Host": HOST, "x-bce-date": timestamp}
		if payload is not None:
			signed["Content-Type"] = "application/json"
		headers = dict(signed)
		headers["Authorization"] = bce_authorization(
			self.secret_id, self.secret_key, method, path, query, signed, timestamp,
		)
		url = f"https://{HOST}{path}"
		if query:
			url = f"{url}?{urlencode(query)}"
		resp = await self._send(client, method, url, content=body or None, headers=headers)
		if resp.status_code >= 400:
			raise self._error(resp)
		if not resp.content:
			return {}
		return resp.json()

	async def _find_zone(self, client: httpx.AsyncClient, fqdn: str) -> str:
		if self._zones is None:
			body = await self._call(client, "GET", "/v1/dns/zone")
			self._zones = [z["name"].rstrip(".") for z in body.get("zones") or []]
		zone = best_zone(fqdn, self._zones)
		if zone is None:
			raise DNSNotFoundError(f"No Baidu Cloud zone found for {fqdn}", vendor=self.vendor, vendor_code="zone_not_found")
		return zone

	async def _lookup_record_id(self, client: httpx.AsyncClient, zone: str, rr: str, value: str) -> Optional[str]:
		body = await self._call(client, "GET", f"/v1/dns/zone/{zone}/record", query={"rr": rr})
		for record in body.get("records") or []:
			if record.get("type") == "TXT" and record.get("rr") == rr and record.get("value") == value:
				return str(record["id"])
		return None

	async def _create(self, fqdn: str, value: str) -> dict:
		self._require_credentials()
		async with self._http() as client:
			zone = await self._find_zone(client, fqdn)
			rr = relative_name(fqdn, zone)
			# The create call returns no body; the id is read back afterwards
			await self._call(
				client, "POST", f"/v1/dns/zone/{zone}/record",
				query={"clientToken": uuid.uuid4().hex},
				payload={"rr": rr, "type": "TXT", "value": value, "ttl": 300},
			)
			record_id = await self._lookup_record_id(client, zone, rr, value)
		if record_id is None:
			raise DNSProviderError(f"Created record for {fqdn} not found on read-back", vendor=self.vendor)
		return {"zone": zone, "record_id": record_id}

	async def _delete(self, handle: RecordHandle) -> None:
		async with self._http() as client:
			await self._call(
				client, "DELETE", f"/v1/dns/zone/{handle.data['zone']}/record/{handle.data['record_id']}",
				query={"clientToken": uuid.uuid4().hex},
			)
