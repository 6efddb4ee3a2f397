#!/usr/bin/env python3
#
# easyacme/utils/rate_limit.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Rate limiting configuration using slowapi."""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

# Rate limit presets
RATE_LIMIT_DEFAULT = "60/minute"
RATE_LIMIT_ISSUE = "10/minute"     # Orders and finalization hit the CA
RATE_LIMIT_REGISTER = "5/minute"   # Account registration hits the CA
RATE_LIMIT_REVEAL = "20/minute"    # Private key and secret reveal

limiter = Limiter(key_func=get_remote_address)

__all__ = [
	"RATE_LIMIT_DEFAULT",
	"RATE_LIMIT_ISSUE",
	"RATE_LIMIT_REGISTER",
	"RATE_LIMIT_REVEAL",
	"limiter",
]
