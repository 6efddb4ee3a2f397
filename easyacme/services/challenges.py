#!/usr/bin/env python3
#
# easyacme/services/challenges.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""DNS-01 challenge preparation for manual and automatic sessions.

Manual sessions only ever read public DNS. Automatic sessions create the
TXT records through a vendor adapter, wait for them to propagate, and
remove them again once the CA is done with them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Optional

from ..dns.base import DNSProvider, RecordHandle
from ..dns.propagation import lookup_txt, wait_for_txt
from ..errors import DNSAuthError, DNSProviderError, ValidationError
from ..utils.config import Config

_log = logging.getLogger(__name__)

MANUAL = "manual"
AUTO = "auto"
MODES = (MANUAL, AUTO)


class PrecheckFailed(ValidationError):
	"""Manual TXT records are not visible yet. The session stays usable."""

	code = "dns_not_ready"


def group_by_fqdn(authorizations: Iterable[dict]) -> dict[str, list[str]]:
	"""Map each challenge FQDN to its distinct TXT values, in order."""
	groups: dict[str, list[str]] = {}
	for authz in authorizations:
		values = groups.setdefault(authz["fqdn"], [])
		if authz["value"] not in values:
			values.append(authz["value"])
	return groups


class ChallengeOrchestrator:
	def __init__(self, cfg: Config) -> None:
		self.cfg = cfg

	async def precheck_manual(self, authorizations: list[dict]) -> None:
		"""Fail fast when manually published values cannot be seen yet."""
		missing: list[str] = []
		for fqdn, values in group_by_fqdn(authorizations).items():
			found = await lookup_txt(fqdn, self.cfg.dns_nameservers)
			if not set(values) <= found:
				missing.append(fqdn)
		if missing:
			_log.info("MANUAL_PRECHECK_MISSING fqdns=%s", ",".join(missing))
			raise PrecheckFailed(
				f"TXT records not visible yet for {', '.join(missing)}",
				fqdns=missing,
			)

	async def publish(
		self,
		provider: DNSProvider,
		authorizations: list[dict],
		on_record: Optional[Callable[[RecordHandle], None]] = None,
	) -> list[RecordHandle]:
		"""Create every TXT record; different names in parallel, same name in sequence.

		``on_record`` sees each handle as soon as it exists so a crash between
		creation and cleanup still leaves a trace. If any creation fails, the
		remaining ones still finish before the first error (auth errors first)
		is raised; the caller cleans up whatever was created.
		"""
		handles: list[RecordHandle] = []

		async def _publish_name(fqdn: str, values: list[str]) -> None:
			for value in values:
				handle = await provider.create_txt_record(fqdn, value)
				handles.append(handle)
				if on_record is not None:
					on_record(handle)

		groups = group_by_fqdn(authorizations)
		results = await asyncio.gather(
			*(_publish_name(fqdn, values) for fqdn, values in groups.items()),
			return_exceptions=True,
		)
		errors = [r for r in results if isinstance(r, BaseException)]
		if errors:
			for err in errors:
				if isinstance(err, asyncio.CancelledError):
					raise err
			auth = next((e for e in errors if isinstance(e, DNSAuthError)), None)
			raise auth or errors[0]
		_log.info("DNS_RECORDS_PUBLISHED vendor=%s count=%d", provider.vendor, len(handles))
		return handles

	async def wait_for_propagation(self, authorizations: list[dict]) -> None:
		"""Poll public resolvers, or sleep a fixed delay when checking is off.

		Values that never show up are logged; the CA gets the final say.
		"""
		if not self.cfg.dns_propagation_check:
			if self.cfg.dns_propagation_delay > 0:
				_log.info("DNS_PROPAGATION_DELAY seconds=%.0f", self.cfg.dns_propagation_delay)
				await asyncio.sleep(self.cfg.dns_propagation_delay)
			return

		checks = [
			wait_for_txt(
				fqdn,
				value,
				nameservers=self.cfg.dns_nameservers,
				timeout=self.cfg.dns_propagation_timeout,
				interval=self.cfg.dns_propagation_interval,
			)
			for fqdn, values in group_by_fqdn(authorizations).items()
			for value in values
		]
		results = await asyncio.gather(*checks)
		if not all(results):
			_log.warning("DNS_PROPAGATION_INCOMPLETE visible=%d total=%d", sum(results), len(results))

	async def cleanup(self, provider: DNSProvider, handles: list[RecordHandle]) -> int:
		"""Delete records best effort. Returns how many deletions failed."""
		failed = 0
		for handle in handles:
			try:
				await provider.delete_txt_record(handle)
			except DNSProviderError as exc:
				failed += 1
				_log.warning("DNS_CLEANUP_FAILED vendor=%s fqdn=%s error=%s", handle.vendor, handle.fqdn, exc)
			except Exception as exc:
				failed += 1
				_log.warning(
					"DNS_CLEANUP_FAILED vendor=%s fqdn=%s error=%s: %s",
					handle.vendor, handle.fqdn, type(exc).__name__, exc,
				)
		return failed
