#!/usr/bin/env python3
#
# easyacme/acme/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""RFC 8555 client and key material helpers."""

from .client import ACMEClient
from .keys import KEY_TYPES

__all__ = ["ACMEClient", "KEY_TYPES"]
