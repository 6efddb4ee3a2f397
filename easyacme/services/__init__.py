#!/usr/bin/env python3
#
# easyacme/services/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Business operations behind the REST API."""

from .context import ServiceContext
from .issuance import IssuanceManager

__all__ = ["ServiceContext", "IssuanceManager"]
