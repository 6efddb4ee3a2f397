#!/usr/bin/env python3
#
# easyacme/dns/aliyun.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Alibaba Cloud DNS adapter.

Uses the official ``alibabacloud_alidns20150109`` SDK. The SDK client is
synchronous, so calls run in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from alibabacloud_alidns20150109 import models as alidns_models
from alibabacloud_alidns20150109.client import Client as AlidnsClient
from alibabacloud_tea_openapi import models as open_api_models
from Tea.exceptions import TeaException, UnretryableException

from ..errors import (
	DNSAuthError,
	DNSNotFoundError,
	DNSProviderError,
	DNSRateLimitError,
	DNSTransientError,
)
from .base import DNSProvider, RecordHandle, best_zone, relative_name

_log = logging.getLogger(__name__)

ENDPOINT = "alidns.aliyuncs.com"
TTL = 600

_AUTH_CODES = (
	"InvalidAccessKeyId",
	"SignatureDoesNotMatch",
	"IncompleteSignature",
	"Forbidden",
	"InvalidTimeStamp",
)


class AliyunProvider(DNSProvider):
	vendor = "aliyun"

	def __init__(self, *args: Any, client: Any = None, **kwargs: Any) -> None:
		super().__init__(*args, **kwargs)
		self._client = client
		self._zones: Optional[list[str]] = None

	def _sdk(self) -> Any:
		if self._client is None:
			timeout_ms = int(self.timeout * 1000)
			self._client = AlidnsClient(open_api_models.Config(
				access_key_id=self.secret_id,
				access_key_secret=self.secret_key,
				endpoint=ENDPOINT,
				connect_timeout=timeout_ms,
				read_timeout=timeout_ms,
			))
		return self._client

	def _translate(self, exc: Exception) -> DNSProviderError:
		if isinstance(exc, UnretryableException):
			return DNSTransientError(f"Network error calling Alibaba Cloud: {exc}", vendor=self.vendor)
		code = str(getattr(exc, "code", "") or "")
		message = str(getattr(exc, "message", "") or exc)
		data = getattr(exc, "data", None)
		status = getattr(exc, "statusCode", None)
		if status is None and isinstance(data, dict):
			status = data.get("statusCode")
		status = int(status or 0)

		if code.startswith(_AUTH_CODES):
			return DNSAuthError(message, vendor=self.vendor, vendor_code=code)
		if code.startswith("Throttling"):
			return DNSRateLimitError(message, vendor=self.vendor, vendor_code=code)
		if "NotFound" in code or "NotBelongToUser" in code or "NoExist" in code:
			return DNSNotFoundError(message, vendor=self.vendor, vendor_code=code)
		if status >= 500 or code in ("ServiceUnavailable", "InternalError"):
			return DNSTransientError(message, vendor=self.vendor, vendor_code=code)
		return DNSProviderError(message, vendor=self.vendor, vendor_code=code or None)

	async def _run(self, func, *args: Any) -> Any:
		try:
			return await asyncio.to_thread(func, *args)
		except (TeaException, UnretryableException) as exc:
			raise self._translate(exc) from exc

	def _find_zone(self, fqdn: str) -> str:
		if self._zones is None:
			resp = self._sdk().describe_domains(alidns_models.DescribeDomainsRequest(page_size=100))
			domains = resp.body.domains.domain if resp.body.domains else None
			self._zones = [d.domain_name for d in domains or []]
		zone = best_zone(fqdn, self._zones)
		if zone is None:
			raise DNSNotFoundError(f"No Alibaba Cloud domain found for {fqdn}", vendor=self.vendor, vendor_code="zone_not_found")
		return zone

	def _existing_record_id(self, zone: str, rr: str, value: str) -> Optional[str]:
		resp = self._sdk().describe_domain_records(alidns_models.DescribeDomainRecordsRequest(
			domain_name=zone,
			rrkey_word=rr,
			type_key_word="TXT",
			value_key_word=value,
		))
		records = resp.body.domain_records.record if resp.body.domain_records else None
		for record in records or []:
			if record.rr == rr and record.value == value:
				return record.record_id
		return None

	def _create_sync(self, fqdn: str, value: str) -> dict:
		zone = self._find_zone(fqdn)
		rr = relative_name(fqdn, zone)
		try:
			resp = self._sdk().add_domain_record(alidns_models.AddDomainRecordRequest(
				domain_name=zone,
				rr=rr,
				type="TXT",
				value=value,
				ttl=TTL,
			))
			record_id = resp.body.record_id
		except TeaException as exc:
			if getattr(exc, "code", None) != "DomainRecordDuplicate":
				raise
			record_id = self._existing_record_id(zone, rr, value)
			if record_id is None:
				raise
			_log.debug("ALIYUN_RECORD_ADOPTED fqdn=%s record_id=%s", fqdn, record_id)
		return {"domain": zone, "record_id": record_id}

	def _delete_sync(self, handle: RecordHandle) -> None:
		self._sdk().delete_domain_record(alidns_models.DeleteDomainRecordRequest(
			record_id=handle.data["record_id"],
		))

	async def _create(self, fqdn: str, value: str) -> dict:
		self._require_credentials()
		return await self._run(self._create_sync, fqdn, value)

	async def _delete(self, handle: RecordHandle) -> None:
		await self._run(self._delete_sync, handle)
