#!/usr/bin/env python3
#
# easyacme/dns/route53.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""AWS Route 53 adapter.

Route 53 holds all TXT values of one name in a single rrset, so values are
merged on create and removed one by one on delete. boto3 is synchronous and
runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from ..errors import (
	DNSAuthError,
	DNSNotFoundError,
	DNSProviderError,
	DNSRateLimitError,
	DNSTransientError,
)
from .base import DNSProvider, RecordHandle, best_zone

_log = logging.getLogger(__name__)

TTL = 10

_AUTH_CODES = {
	"AccessDenied",
	"AccessDeniedException",
	"AuthFailure",
	"ExpiredToken",
	"InvalidClientTokenId",
	"InvalidSignatureException",
	"SignatureDoesNotMatch",
	"UnrecognizedClientException",
}
_RATE_LIMIT_CODES = {"Throttling", "ThrottlingException", "PriorRequestNotComplete"}


def _quoted(value: str) -> str:
	return f'"{value}"'


class Route53Provider(DNSProvider):
	vendor = "route53"

	def __init__(self, *args: Any, client: Any = None, **kwargs: Any) -> None:
		super().__init__(*args, **kwargs)
		self._client = client

	def _boto(self) -> Any:
		if self._client is None:
			self._client = boto3.client(
				"route53",
				aws_access_key_id=self.secret_id,
				aws_secret_access_key=self.secret_key,
			)
		return self._client

	def _translate(self, exc: Exception) -> DNSProviderError:
		if isinstance(exc, NoCredentialsError):
			return DNSAuthError(str(exc), vendor=self.vendor, vendor_code="NoCredentials")
		if isinstance(exc, ClientError):
			error = exc.response.get("Error", {})
			code = str(error.get("Code", ""))
			message = str(error.get("Message", "")) or str(exc)
			if code in _AUTH_CODES:
				return DNSAuthError(message, vendor=self.vendor, vendor_code=code)
			if code in _RATE_LIMIT_CODES:
				return DNSRateLimitError(message, vendor=self.vendor, vendor_code=code)
			if code == "NoSuchHostedZone":
				return DNSNotFoundError(message, vendor=self.vendor, vendor_code=code)
			status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
			if status >= 500:
				return DNSTransientError(message, vendor=self.vendor, vendor_code=code)
			return DNSProviderError(message, vendor=self.vendor, vendor_code=code)
		return DNSTransientError(str(exc), vendor=self.vendor)

	async def _run(self, func, *args: Any, **kwargs: Any) -> Any:
		try:
			return await asyncio.to_thread(func, *args, **kwargs)
		except (ClientError, BotoCoreError) as exc:
			raise self._translate(exc) from exc

	def _find_zone_id(self, fqdn: str) -> str:
		zones: dict[str, str] = {}
		paginator = self._boto().get_paginator("list_hosted_zones")
		for page in paginator.paginate():
			for zone in page.get("HostedZones", []):
				if zone.get("Config", {}).get("PrivateZone"):
					continue
				zones[zone["Name"].rstrip(".")] = zone["Id"]
		name = best_zone(fqdn, list(zones))
		if name is None:
			raise DNSNotFoundError(
				f"No public Route 53 hosted zone found for {fqdn}",
				vendor=self.vendor,
				vendor_code="zone_not_found",
			)
		return zones[name]

	def _current_rrset(self, zone_id: str, fqdn: str) -> Optional[dict]:
		resp = self._boto().list_resource_record_sets(
			HostedZoneId=zone_id,
			StartRecordName=fqdn,
			StartRecordType="TXT",
			MaxItems="1",
		)
		for rrset in resp.get("ResourceRecordSets", []):
			if rrset["Name"].rstrip(".").lower() == fqdn and rrset["Type"] == "TXT":
				return rrset
		return None

	def _change(self, zone_id: str, action: str, fqdn: str, values: list[str], ttl: int) -> None:
		resp = self._boto().change_resource_record_sets(
			HostedZoneId=zone_id,
			ChangeBatch={
				"Comment": "easyacme dns-01 challenge",
				"Changes": [{
					"Action": action,
					"ResourceRecordSet": {
						"Name": fqdn,
						"Type": "TXT",
						"TTL": ttl,
						"ResourceRecords": [{"Value": v} for v in values],
					},
				}],
			},
		)
		_log.debug("ROUTE53_CHANGE action=%s fqdn=%s change_id=%s", action, fqdn, resp.get("ChangeInfo", {}).get("Id"))

	def _create_sync(self, fqdn: str, value: str) -> dict:
		zone_id = self._find_zone_id(fqdn)
		rrset = self._current_rrset(zone_id, fqdn)
		values = [r["Value"] for r in rrset.get("ResourceRecords", [])] if rrset else []
		if _quoted(value) not in values:
			values.append(_quoted(value))
			self._change(zone_id, "UPSERT", fqdn, values, TTL)
		return {"zone_id": zone_id}

	def _delete_sync(self, handle: RecordHandle) -> None:
		zone_id = handle.data["zone_id"]
		rrset = self._current_rrset(zone_id, handle.fqdn)
		values = [r["Value"] for r in rrset.get("ResourceRecords", [])] if rrset else []
		if _quoted(handle.value) not in values:
			raise DNSNotFoundError("TXT value no longer present", vendor=self.vendor)
		remaining = [v for v in values if v != _quoted(handle.value)]
		ttl = rrset.get("TTL", TTL)
		if remaining:
			self._change(zone_id, "UPSERT", handle.fqdn, remaining, ttl)
		else:
			# DELETE must match the existing rrset exactly
			self._change(zone_id, "DELETE", handle.fqdn, values, ttl)

	async def _create(self, fqdn: str, value: str) -> dict:
		self._require_credentials()
		return await self._run(self._create_sync, fqdn, value)

	async def _delete(self, handle: RecordHandle) -> None:
		await self._run(self._delete_sync, handle)
