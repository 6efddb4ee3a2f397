#!/usr/bin/env python3
#
# easyacme/dns/propagation.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Wait for TXT records to become visible on public resolvers."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Sequence

import dns.asyncresolver
import dns.exception
import dns.resolver

_log = logging.getLogger(__name__)


async def lookup_txt(fqdn: str, nameservers: Sequence[str] = (), *, lifetime: float = 5.0) -> set[str]:
	"""TXT values currently served for ``fqdn``. Lookup failures yield an empty set."""
	resolver = dns.asyncresolver.Resolver(configure=not nameservers)
	if nameservers:
		resolver.nameservers = list(nameservers)
	resolver.lifetime = lifetime
	try:
		answer = await resolver.resolve(fqdn, "TXT")
	except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
		return set()
	except (dns.resolver.NoNameservers, dns.exception.Timeout) as exc:
		_log.debug("DNS_LOOKUP_FAILED fqdn=%s error=%s", fqdn, exc)
		return set()
	except dns.exception.DNSException as exc:
		_log.debug("DNS_LOOKUP_ERROR fqdn=%s error=%s", fqdn, exc)
		return set()
	values: set[str] = set()
	for rdata in answer:
		values.add(b"".join(rdata.strings).decode("utf-8", errors="replace"))
	return values


async def wait_for_txt(
	fqdn: str,
	value: str,
	*,
	nameservers: Sequence[str] = (),
	timeout: float = 120.0,
	interval: float = 10.0,
) -> bool:
	"""Poll until ``value`` is served for ``fqdn`` or ``timeout`` elapses.

	Returns False on timeout; the caller decides whether to proceed anyway.
	"""
	deadline = time.monotonic() + timeout
	attempt = 0
	while True:
		attempt += 1
		if value in await lookup_txt(fqdn, nameservers):
			_log.info("DNS_PROPAGATED fqdn=%s attempts=%d", fqdn, attempt)
			return True
		remaining = deadline - time.monotonic()
		if remaining <= 0:
			_log.warning("DNS_PROPAGATION_TIMEOUT fqdn=%s attempts=%d", fqdn, attempt)
			return False
		await asyncio.sleep(min(interval, remaining))
