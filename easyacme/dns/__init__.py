#!/usr/bin/env python3
#
# easyacme/dns/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""DNS vendor adapters used for DNS-01 challenges."""

from .base import DNSProvider, RecordHandle
from .propagation import lookup_txt, wait_for_txt
from .registry import PROVIDER_TYPES, build_provider

__all__ = [
	"DNSProvider",
	"RecordHandle",
	"PROVIDER_TYPES",
	"build_provider",
	"lookup_txt",
	"wait_for_txt",
]
