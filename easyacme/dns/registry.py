#!/usr/bin/env python3
#
# easyacme/dns/registry.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Vendor name to adapter class lookup."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from ..errors import ValidationError
from .aliyun import AliyunProvider
from .baiducloud import BaiduCloudProvider
from .base import DNSProvider
from .cloudflare import CloudflareProvider
from .godaddy import GoDaddyProvider
from .huaweicloud import HuaweiCloudProvider
from .route53 import Route53Provider
from .tencentcloud import TencentCloudProvider

PROVIDERS: dict[str, type[DNSProvider]] = {
	cls.vendor: cls
	for cls in (
		TencentCloudProvider,
		AliyunProvider,
		HuaweiCloudProvider,
		BaiduCloudProvider,
		CloudflareProvider,
		GoDaddyProvider,
		Route53Provider,
	)
}

PROVIDER_TYPES = tuple(PROVIDERS)

# Vendors whose secret_key may be left empty
OPTIONAL_SECRET_KEY = frozenset({"cloudflare"})


def build_provider(
	provider_type: str,
	secret_id: str,
	secret_key: str,
	*,
	timeout: float = 30.0,
	retry_attempts: int = 4,
	transport: Optional[httpx.AsyncBaseTransport] = None,
	**extra: Any,
) -> DNSProvider:
	"""Instantiate the adapter for ``provider_type`` from a credential pair."""
	try:
		cls = PROVIDERS[provider_type]
	except KeyError:
		raise ValidationError(
			f"Unsupported DNS provider type {provider_type!r}; expected one of {', '.join(PROVIDER_TYPES)}"
		) from None
	return cls(
		secret_id,
		secret_key,
		timeout=timeout,
		retry_attempts=retry_attempts,
		transport=transport,
		**extra,
	)
