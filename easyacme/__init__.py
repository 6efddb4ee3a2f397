#!/usr/bin/env python3
#
# easyacme/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""easyacme – ACME certificate lifecycle backend with DNS-01 automation."""

from .main import create_app

__all__ = ["create_app"]
