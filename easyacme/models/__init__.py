#!/usr/bin/env python3
#
# easyacme/models/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Pydantic models for easyacme."""

from .acme import (
	AccountCreate,
	CertificateIssue,
	OrderCreate,
	RevokeRequest,
)
from .auth import PERMISSIONS, TokenCreate
from .dns import (
	BatchDelete,
	DNSProviderCreate,
	DNSProviderUpdate,
)

__all__ = [
	# ACME
	"AccountCreate",
	"CertificateIssue",
	"OrderCreate",
	"RevokeRequest",
	# Auth
	"PERMISSIONS",
	"TokenCreate",
	# DNS
	"BatchDelete",
	"DNSProviderCreate",
	"DNSProviderUpdate",
]
