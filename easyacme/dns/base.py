#!/usr/bin/env python3
#
# easyacme/dns/base.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Common contract for DNS vendor adapters.

Adapters implement ``_create`` and ``_delete`` against the vendor API and
raise the ``DNS*Error`` classes from :mod:`easyacme.errors`. The public
methods add bounded retries for rate-limit and transient errors and make
deletion of an already-missing record a success.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, Optional, TypeVar

import httpx

from ..errors import (
	DNSAuthError,
	DNSNotFoundError,
	DNSProviderError,
	DNSRateLimitError,
	DNSTransientError,
)

_log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL = 600


@dataclass(frozen=True)
class RecordHandle:
	"""Everything an adapter needs to delete a record it created."""
	vendor: str
	fqdn: str
	value: str
	data: dict = field(default_factory=dict)

	def to_dict(self) -> dict:
		return {"vendor": self.vendor, "fqdn": self.fqdn, "value": self.value, "data": self.data}

	@classmethod
	def from_dict(cls, raw: dict) -> "RecordHandle":
		return cls(vendor=raw["vendor"], fqdn=raw["fqdn"], value=raw["value"], data=dict(raw.get("data") or {}))

	def to_json(self) -> str:
		return json.dumps(self.to_dict(), separators=(",", ":"))


def normalize_fqdn(fqdn: str) -> str:
	return fqdn.strip().rstrip(".").lower()


def zone_candidates(fqdn: str) -> list[str]:
	"""Possible zone names for ``fqdn``, longest first, excluding the bare TLD.

	``_acme-challenge.www.example.com`` yields ``www.example.com`` ...
	``example.com`` (the record name itself is never a zone apex candidate
	because ``_acme-challenge`` labels are not delegated).
	"""
	labels = normalize_fqdn(fqdn).split(".")
	if labels and labels[0] == "_acme-challenge":
		labels = labels[1:]
	return [".".join(labels[i:]) for i in range(len(labels) - 1)]


def best_zone(fqdn: str, zones: list[str]) -> Optional[str]:
	"""Longest zone in ``zones`` that ``fqdn`` belongs to."""
	name = normalize_fqdn(fqdn)
	matches = [
		z for z in (normalize_fqdn(z) for z in zones)
		if z and (name == z or name.endswith("." + z))
	]
	return max(matches, key=len) if matches else None


def relative_name(fqdn: str, zone: str) -> str:
	"""Record name relative to ``zone`` (``@`` for the apex)."""
	name, zone = normalize_fqdn(fqdn), normalize_fqdn(zone)
	if name == zone:
		return "@"
	return name[: -(len(zone) + 1)]


def classify_http_error(
	vendor: str,
	status: int,
	message: str,
	code: str | None = None,
) -> DNSProviderError:
	"""Default status-code based classification of a vendor error."""
	if status in (401, 403):
		return DNSAuthError(message, vendor=vendor, vendor_code=code)
	if status == 429:
		return DNSRateLimitError(message, vendor=vendor, vendor_code=code)
	if status == 404:
		return DNSNotFoundError(message, vendor=vendor, vendor_code=code)
	if status >= 500:
		return DNSTransientError(message, vendor=vendor, vendor_code=code)
	return DNSProviderError(message, vendor=vendor, vendor_code=code)


class DNSProvider(ABC):
	"""Base class for vendor adapters.

	An adapter is built from one credential pair and is otherwise stateless
	apart from small lookup caches (zones).
	"""

	vendor: ClassVar[str] = ""
	# Seconds; doubled per attempt
	retry_base_delay: ClassVar[float] = 1.0

	def __init__(
		self,
		secret_id: str,
		secret_key: str,
		*,
		timeout: float = 30.0,
		retry_attempts: int = 4,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.secret_id = (secret_id or "").strip()
		self.secret_key = (secret_key or "").strip()
		self.timeout = timeout
		self.retry_attempts = max(1, retry_attempts)
		self._transport = transport

	def __repr__(self) -> str:
		return f"<{type(self).__name__} secret_id={self.secret_id[:4]}…>"

	# ------------------------------------------------------------------
	# Public contract
	# ------------------------------------------------------------------

	async def create_txt_record(self, fqdn: str, value: str) -> RecordHandle:
		fqdn = normalize_fqdn(fqdn)
		data = await self._with_retries(lambda: self._create(fqdn, value), "create")
		_log.info("DNS_RECORD_CREATED vendor=%s fqdn=%s", self.vendor, fqdn)
		return RecordHandle(vendor=self.vendor, fqdn=fqdn, value=value, data=data)

	async def delete_txt_record(self, handle: RecordHandle) -> None:
		"""Delete a record. A record that is already gone counts as deleted."""
		try:
			await self._with_retries(lambda: self._delete(handle), "delete")
		except DNSNotFoundError:
			_log.info("DNS_RECORD_ALREADY_GONE vendor=%s fqdn=%s", self.vendor, handle.fqdn)
			return
		_log.info("DNS_RECORD_DELETED vendor=%s fqdn=%s", self.vendor, handle.fqdn)

	@abstractmethod
	async def _create(self, fqdn: str, value: str) -> dict:
		"""Create the record; return the handle data needed to delete it."""

	@abstractmethod
	async def _delete(self, handle: RecordHandle) -> None:
		"""Delete the record described by ``handle``."""

	# ------------------------------------------------------------------
	# Helpers for subclasses
	# ------------------------------------------------------------------

	async def _with_retries(self, func: Callable[[], Awaitable[T]], op: str) -> T:
		attempt = 1
		while True:
			try:
				return await func()
			except (DNSRateLimitError, DNSTransientError) as exc:
				if attempt >= self.retry_attempts:
					_log.warning(
						"DNS_%s_GAVE_UP vendor=%s attempts=%d error=%s",
						op.upper(), self.vendor, attempt, exc,
					)
					raise
				delay = self.retry_base_delay * (2 ** (attempt - 1))
				_log.info(
					"DNS_%s_RETRY vendor=%s attempt=%d/%d delay=%.1fs error=%s",
					op.upper(), self.vendor, attempt, self.retry_attempts, delay, exc,
				)
				await asyncio.sleep(delay)
				attempt += 1

	def _http(self, **kwargs: Any) -> httpx.AsyncClient:
		return httpx.AsyncClient(timeout=self.timeout, transport=self._transport, **kwargs)

	async def _send(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
		"""Send a request, mapping network failures to ``DNSTransientError``."""
		try:
			return await client.request(method, url, **kwargs)
		except httpx.TimeoutException as exc:
			raise DNSTransientError(f"Timeout calling {url}", vendor=self.vendor, vendor_code="timeout") from exc
		except httpx.TransportError as exc:
			raise DNSTransientError(f"Network error calling {url}: {exc}", vendor=self.vendor) from exc

	def _require_credentials(self, *, key_required: bool = True) -> None:
		if not self.secret_id or (key_required and not self.secret_key):
			raise DNSAuthError("Credential is incomplete", vendor=self.vendor, vendor_code="missing_credentials")
