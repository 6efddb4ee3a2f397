#!/usr/bin/env python3
#
# easyacme/utils/vault.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""
Fernet-based encryption for secrets at rest (account keys, certificate keys,
DNS vendor secrets).

Each value is encrypted with a unique Fernet key derived from:
  - A random 16-byte salt (stored alongside the ciphertext)
  - The master key (pepper) from EASYACME_SECRET_KEY

Storage format:  "vault:1:<salt_hex>:<fernet_token>"

``SecretStore`` layers opaque references on top: callers only ever hold a
``sec_…`` id, and the ciphertext lives in the ``secrets`` table.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import secrets
import sqlite3

from cryptography.fernet import Fernet, InvalidToken

from ..db import sqlite_secrets
from ..errors import ResourceNotFoundError

_log = logging.getLogger(__name__)

_VAULT_PREFIX = "vault:1:"
_REF_PREFIX = "sec_"

# PBKDF2 work factor; tests lower it via monkeypatch
KDF_ITERATIONS = 480_000


def _derive_key(pepper: str, salt: bytes) -> bytes:
	"""Derive a 32-byte Fernet key from pepper + salt via PBKDF2-SHA256."""
	dk = hashlib.pbkdf2_hmac(
		"sha256",
		pepper.encode("utf-8"),
		salt,
		iterations=KDF_ITERATIONS,
	)
	return base64.urlsafe_b64encode(dk)


def encrypt(plaintext: str, pepper: str) -> str:
	"""Encrypt a plaintext secret into the vault format."""
	if not pepper:
		raise ValueError("EASYACME_SECRET_KEY is not set")
	salt = os.urandom(16)
	f = Fernet(_derive_key(pepper, salt))
	token = f.encrypt(plaintext.encode("utf-8"))
	return f"{_VAULT_PREFIX}{salt.hex()}:{token.decode('ascii')}"


def decrypt(stored: str, pepper: str) -> str:
	"""Decrypt a vault-formatted string back to plaintext."""
	if not pepper:
		raise ValueError("EASYACME_SECRET_KEY is not set")
	if not is_encrypted(stored):
		raise ValueError("Value is not vault-encrypted")

	try:
		salt_hex, fernet_token = stored[len(_VAULT_PREFIX):].split(":", 1)
		salt = bytes.fromhex(salt_hex)
		if len(salt) != 16:
			raise ValueError("Invalid salt length")
		f = Fernet(_derive_key(pepper, salt))
		return f.decrypt(fernet_token.encode("ascii")).decode("utf-8")
	except (InvalidToken, ValueError) as exc:
		_log.error("VAULT_DECRYPT_FAILED")
		raise ValueError("Cannot decrypt secret - wrong EASYACME_SECRET_KEY?") from exc


def is_encrypted(value: str | None) -> bool:
	"""Check whether a value is vault-encrypted."""
	return bool(value and value.startswith(_VAULT_PREFIX))


class SecretStore:
	"""Put/get/delete secrets by opaque reference.

	Writes join the caller's open transaction when there is one, so a secret
	and the row referencing it commit or roll back together.
	"""

	def __init__(self, conn: sqlite3.Connection, pepper: str) -> None:
		if not pepper:
			raise ValueError("EASYACME_SECRET_KEY is not set")
		self._conn = conn
		self._pepper = pepper

	def put(self, plaintext: str) -> str:
		ref = _REF_PREFIX + secrets.token_urlsafe(18)
		sqlite_secrets.insert_secret(self._conn, ref, encrypt(plaintext, self._pepper))
		return ref

	def get(self, ref: str) -> str:
		stored = sqlite_secrets.get_secret(self._conn, ref)
		if stored is None:
			raise ResourceNotFoundError(f"Secret {ref} not found")
		return decrypt(stored, self._pepper)

	def delete(self, ref: str | None) -> bool:
		"""Remove a secret. Missing refs are not an error."""
		if not ref:
			return False
		return sqlite_secrets.delete_secret(self._conn, ref)
