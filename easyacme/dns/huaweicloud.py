#!/usr/bin/env python3
#
# easyacme/dns/huaweicloud.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Huawei Cloud DNS adapter (v2 API, AK/SK ``SDK-HMAC-SHA256`` signing).

Huawei stores TXT values as record sets: one set per name holding every
value. Creating a value appends to an existing set; deleting removes only
our value and drops the set once it is empty.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote, urlencode

import httpx

from ..errors import (
	DNSAuthError,
	DNSNotFoundError,
	DNSProviderError,
	DNSRateLimitError,
)
from .base import DNSProvider, RecordHandle, best_zone, classify_http_error

_log = logging.getLogger(__name__)

HOST = "dns.myhuaweicloud.com"
ALGORITHM = "SDK-HMAC-SHA256"


def _canonical_uri(path: str) -> str:
	segments = [quote(seg, safe="-_.~") for seg in path.split("/")]
	uri = "/".join(segments)
	return uri if uri.endswith("/") else uri + "/"


def sdk_authorization(
	access_key: str,
	secret_key: str,
	method: str,
	path: str,
	query: dict[str, str],
	headers: dict[str, str],
	body: bytes,
) -> str:
	"""Authorization header value; ``headers`` must contain host and x-sdk-date."""
	lowered = {k.lower(): v.strip() for k, v in headers.items()}
	signed = sorted(lowered)
	canonical_headers = "".join(f"{k}:{lowered[k]}\n" for k in signed)
	canonical_query = "&".join(
		f"{quote(k, safe='-_.~')}={quote(str(query[k]), safe='-_.~')}" for k in sorted(query)
	)
	canonical_request = "\n".join([
		method.upper(),
		_canonical_uri(path),
		canonical_query,
		canonical_headers,
		";".join(signed),
		hashlib.sha256(body).hexdigest(),
	])
	string_to_sign = "\n".join([
		ALGORITHM,
		lowered["x-sdk-date"],
		hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
	])
	signature = hmac.new(secret_key.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()
	return f"{ALGORITHM} Access={access_key}, SignedHeaders={';'.join(signed)}, Signature={signature}"


def _quoted(value: str) -> str:
	return f'"{value}"'


class HuaweiCloudProvider(DNSProvider):
	vendor = "huaweicloud"

	def __init__(self, *args: Any, **kwargs: Any) -> None:
		super().__init__(*args, **kwargs)
		self._zones: dict[str, str] | None = None

	def _error(self, resp: httpx.Response) -> DNSProviderError:
		try:
			body = resp.json()
		except ValueError:
			body = {}
		code = str(body.get("code") or body.get("error_code") or resp.status_code)
		message = str(body.get("message") or body.get("error_msg") or resp.text[:200])
		# Gateway codes: 0301-0307 are signature and credential failures, 0308 throttling
		if code == "APIGW.0308":
			return DNSRateLimitError(message, vendor=self.vendor, vendor_code=code)
		if code.startswith("APIGW.030"):
			return DNSAuthError(message, vendor=self.vendor, vendor_code=code)
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
		body = json.dumps(payload).encode("utf-8") if payload is not None else b""
		headers = {
			"Host": HOST,
			"X-Sdk-Date": datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ"),
		}
		if payload is not None:
			headers["Content-Type"] = "application/json"
		headers["Authorization"] = sdk_authorization(
			self.secret_id, self.secret_key, method, path, query, headers, body,
		)
		url = f"https://{HOST}{path}"
		if query:
			url = f"{url}?{urlencode(sorted(query.items()))}"
		resp = await self._send(client, method, url, content=body or None, headers=headers)
		if resp.status_code >= 400:
			raise self._error(resp)
		if not resp.content:
			return {}
		return resp.json()

	async def _find_zone(self, client: httpx.AsyncClient, fqdn: str) -> tuple[str, str]:
		if self._zones is None:
			body = await self._call(client, "GET", "/v2/zones", query={"type": "public", "limit": "500"})
			self._zones = {z["name"].rstrip("."): z["id"] for z in body.get("zones") or []}
		zone = best_zone(fqdn, list(self._zones))
		if zone is None:
			raise DNSNotFoundError(f"No Huawei Cloud zone found for {fqdn}", vendor=self.vendor, vendor_code="zone_not_found")
		return zone, self._zones[zone]

	async def _find_recordset(self, client: httpx.AsyncClient, zone_id: str, fqdn: str) -> Optional[dict]:
		body = await self._call(
			client, "GET", f"/v2/zones/{zone_id}/recordsets",
			query={"name": f"{fqdn}.", "type": "TXT"},
		)
		for recordset in body.get("recordsets") or []:
			if recordset.get("name", "").rstrip(".").lower() == fqdn:
				return recordset
		return None

	async def _create(self, fqdn: str, value: str) -> dict:
		self._require_credentials()
		async with self._http() as client:
			_zone, zone_id = await self._find_zone(client, fqdn)
			existing = await self._find_recordset(client, zone_id, fqdn)
			if existing is None:
				created = await self._call(
					client, "POST", f"/v2/zones/{zone_id}/recordsets",
					payload={"name": f"{fqdn}.", "type": "TXT", "ttl": 300, "records": [_quoted(value)]},
				)
				recordset_id = created["id"]
			else:
				recordset_id = existing["id"]
				records = list(existing.get("records") or [])
				if _quoted(value) not in records:
					records.append(_quoted(value))
					await self._call(
						client, "PUT", f"/v2/zones/{zone_id}/recordsets/{recordset_id}",
						payload={"records": records, "ttl": existing.get("ttl", 300)},
					)
		return {"zone_id": zone_id, "recordset_id": recordset_id}

	async def _delete(self, handle: RecordHandle) -> None:
		zone_id = handle.data["zone_id"]
		recordset_id = handle.data["recordset_id"]
		path = f"/v2/zones/{zone_id}/recordsets/{recordset_id}"
		async with self._http() as client:
			current = await self._call(client, "GET", path)
			records = list(current.get("records") or [])
			if _quoted(handle.value) not in records:
				raise DNSNotFoundError("TXT value no longer present", vendor=self.vendor)
			remaining = [r for r in records if r != _quoted(handle.value)]
			if remaining:
				await self._call(client, "PUT", path, payload={"records": remaining, "ttl": current.get("ttl", 300)})
			else:
				await self._call(client, "DELETE", path)
