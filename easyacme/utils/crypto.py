#!/usr/bin/env python3
#
# easyacme/utils/crypto.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Token generation and hashing for API access tokens and session ids."""

from __future__ import annotations

import hashlib
import hmac
import secrets


def new_token() -> str:
	"""Generate a new secure random token (32 bytes, URL-safe base64)."""
	return secrets.token_urlsafe(32)


def new_id(prefix: str, nbytes: int = 12) -> str:
	"""Generate an opaque identifier such as ``sess_…``."""
	return f"{prefix}_{secrets.token_urlsafe(nbytes)}"


def hash_token(token: str) -> str:
	"""Hash a token for storage using SHA-256.

	We hash tokens before storage so that database leaks don't
	directly expose valid API tokens.
	"""
	return hashlib.sha256(token.encode("utf-8")).hexdigest()


def tokens_match(token: str, token_hash: str) -> bool:
	"""Constant-time comparison of a presented token against a stored hash."""
	return hmac.compare_digest(hash_token(token), token_hash)
