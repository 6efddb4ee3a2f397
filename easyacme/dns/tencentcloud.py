#!/usr/bin/env python3
#
# easyacme/dns/tencentcloud.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Tencent Cloud DNSPod adapter (API 3.0, TC3-HMAC-SHA256 signing)."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any

import httpx

from ..errors import (
	DNSAuthError,
	DNSNotFoundError,
	DNSProviderError,
	DNSRateLimitError,
	DNSTransientError,
)
from .base import DNSProvider, RecordHandle, best_zone, relative_name

_log = logging.getLogger(__name__)

HOST = "dnspod.tencentcloudapi.com"
SERVICE = "dnspod"
VERSION = "2021-03-23"
ALGORITHM = "TC3-HMAC-SHA256"
# "Default" line; DNSPod rejects records without one
RECORD_LINE = "默认"


def _hmac_sha256(key: bytes, msg: str) -> bytes:
	return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def tc3_authorization(
	secret_id: str,
	secret_key: str,
	payload: str,
	timestamp: int,
	*,
	host: str = HOST,
	service: str = SERVICE,
) -> str:
	"""Authorization header value for a JSON POST to ``host``."""
	date = datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d")
	canonical_headers = f"content-type:application/json; charset=utf-8\nhost:{host}\n"
	signed_headers = "content-type;host"
	canonical_request = "\n".join([
		"POST",
		"/",
		"",
		canonical_headers,
		signed_headers,
		hashlib.sha256(payload.encode("utf-8")).hexdigest(),
	])
	scope = f"{date}/{service}/tc3_request"
	string_to_sign = "\n".join([
		ALGORITHM,
		str(timestamp),
		scope,
		hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
	])
	secret_date = _hmac_sha256(("TC3" + secret_key).encode("utf-8"), date)
	secret_service = _hmac_sha256(secret_date, service)
	secret_signing = _hmac_sha256(secret_service, "tc3_request")
	signature = hmac.new(secret_signing, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()
	return (
		f"{ALGORITHM} Credential={secret_id}/{scope}, "
		f"SignedHeaders={signed_headers}, Signature={signature}"
	)


class TencentCloudProvider(DNSProvider):
	vendor = "tencentcloud"

	def __init__(self, *args: Any, **kwargs: Any) -> None:
		super().__init__(*args, **kwargs)
		self._zones: list[str] | None = None

	def _error(self, code: str, message: str) -> DNSProviderError:
		if code.startswith(("AuthFailure", "UnauthorizedOperation")):
			return DNSAuthError(message, vendor=self.vendor, vendor_code=code)
		if code.startswith("RequestLimitExceeded"):
			return DNSRateLimitError(message, vendor=self.vendor, vendor_code=code)
		if code.startswith("ResourceNotFound") or code == "InvalidParameter.RecordIdInvalid":
			return DNSNotFoundError(message, vendor=self.vendor, vendor_code=code)
		if code.startswith(("InternalError", "ResourceUnavailable")):
			return DNSTransientError(message, vendor=self.vendor, vendor_code=code)
		return DNSProviderError(message, vendor=self.vendor, vendor_code=code)

	async def _call(self, client: httpx.AsyncClient, action: str, params: dict) -> dict:
		payload = json.dumps(params, separators=(",", ":"), ensure_ascii=False)
		timestamp = int(time.time())
		headers = {
			"Authorization": tc3_authorization(self.secret_id, self.secret_key, payload, timestamp),
			"Content-Type": "application/json; charset=utf-8",
			"Host": HOST,
			"X-TC-Action": action,
			"X-TC-Timestamp": str(timestamp),
			"X-TC-Version": VERSION,
		}
		resp = await self._send(client, "POST", f"https://{HOST}/", content=payload.encode("utf-8"), headers=headers)
		if resp.status_code >= 500:
			raise DNSTransientError(f"HTTP {resp.status_code}", vendor=self.vendor, vendor_code=str(resp.status_code))
		try:
			body = resp.json().get("Response") or {}
		except ValueError as exc:
			raise DNSProviderError(f"Malformed response to {action}", vendor=self.vendor) from exc
		error = body.get("Error")
		if error:
			raise self._error(str(error.get("Code", "")), str(error.get("Message", "")))
		return body

	async def _find_zone(self, client: httpx.AsyncClient, fqdn: str) -> str:
		if self._zones is None:
			try:
				body = await self._call(client, "DescribeDomainList", {"Limit": 3000})
				self._zones = [d["Name"] for d in body.get("DomainList") or []]
			except DNSNotFoundError:
				# Account without any domain
				self._zones = []
		zone = best_zone(fqdn, self._zones)
		if zone is None:
			raise DNSNotFoundError(f"No DNSPod domain found for {fqdn}", vendor=self.vendor, vendor_code="zone_not_found")
		return zone

	async def _create(self, fqdn: str, value: str) -> dict:
		self._require_credentials()
		async with self._http() as client:
			zone = await self._find_zone(client, fqdn)
			body = await self._call(client, "CreateRecord", {
				"Domain": zone,
				"SubDomain": relative_name(fqdn, zone),
				"RecordType": "TXT",
				"RecordLine": RECORD_LINE,
				"Value": value,
				"TTL": 600,
			})
		return {"domain": zone, "record_id": body["RecordId"]}

	async def _delete(self, handle: RecordHandle) -> None:
		async with self._http() as client:
			await self._call(client, "DeleteRecord", {
				"Domain": handle.data["domain"],
				"RecordId": int(handle.data["record_id"]),
			})
