#!/usr/bin/env python3
#
# easyacme/utils/config.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Configuration loading and app-level defaults."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path

_log = logging.getLogger(__name__)


class ConfigValidationError(Exception):
	"""Raised when critical configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Fixed constants
# ---------------------------------------------------------------------------
LETSENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"
DEFAULT_NAMESERVERS = ("8.8.8.8", "1.1.1.1")


@dataclass(frozen=True)
class Config:
	"""Resolved runtime configuration derived from env and defaults."""
	base_dir: Path
	data_dir: Path
	db_path: Path
	log_level: str = "INFO"
	secret_key: str = ""
	admin_token: str = ""
	host: str = "0.0.0.0"
	port: int = 8000
	http_timeout: float = 30.0
	acme_poll_timeout: float = 120.0
	acme_poll_max_interval: float = 16.0
	dns_propagation_check: bool = True
	dns_propagation_timeout: float = 120.0
	dns_propagation_interval: float = 10.0
	dns_propagation_delay: float = 30.0
	dns_nameservers: tuple[str, ...] = field(default_factory=lambda: DEFAULT_NAMESERVERS)
	dns_retry_attempts: int = 4
	manual_dns_precheck: bool = False
	session_ttl: int = 3600
	issuance_timeout: float = 900.0


def _parse_value(raw: str) -> str:
	"""Extract value, respecting quotes and stripping inline comments."""
	raw = raw.strip()
	if raw and raw[0] in ('"', "'"):
		quote = raw[0]
		end = raw.find(quote, 1)
		if end != -1:
			return raw[1:end]
	if " #" in raw:
		raw = raw.split(" #", 1)[0]
	return raw.strip()


def load_dotenv(dotenv_path: Path | None = None) -> None:
	"""Load KEY=VALUE pairs from settings.env without overriding the environment."""
	project_root = Path(__file__).resolve().parents[2]
	dotenv_path = dotenv_path or (project_root / "settings.env")
	if not dotenv_path.exists():
		return
	for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
		line = raw_line.strip()
		if not line or line.startswith("#") or "=" not in line:
			continue
		key, value = line.split("=", 1)
		key = key.strip()
		if key.startswith("export "):
			key = key[7:].strip()
		if not key:
			continue
		os.environ.setdefault(key, _parse_value(value))


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
	raw = os.getenv(name)
	if raw is None or raw.strip() == "":
		return default
	try:
		value = float(raw)
	except ValueError as exc:
		raise ConfigValidationError(f"{name} must be a number, got {raw!r}") from exc
	if value < minimum:
		raise ConfigValidationError(f"{name} must be >= {minimum}, got {value}")
	return value


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
	return int(_env_float(name, default, minimum=minimum))


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or raw.strip() == "":
		return default
	return raw.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> Config:
	"""Load configuration from environment variables (optionally via settings.env)."""
	load_dotenv()
	project_root = Path(__file__).resolve().parents[2]

	data_dir = Path(os.getenv("EASYACME_DATA_DIR", str(project_root / "data"))).resolve()
	db_path = (data_dir / "easyacme.db").resolve()

	try:
		if data_dir.exists() and not data_dir.is_dir():
			raise ConfigValidationError(f"Path exists but is not a directory: {data_dir}")
		data_dir.mkdir(parents=True, exist_ok=True)
	except OSError as exc:
		raise ConfigValidationError(f"Cannot create data directory: {exc}") from exc

	allowed_levels = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
	log_level = os.getenv("LOG_LEVEL", "INFO").upper()
	if log_level not in allowed_levels:
		log_level = "INFO"

	# Master key for the secret store (required for production)
	secret_key = os.getenv("EASYACME_SECRET_KEY", "")
	if not secret_key:
		import sys
		if "pytest" not in sys.modules and "PYTEST_CURRENT_TEST" not in os.environ:
			raise ConfigValidationError(
				"EASYACME_SECRET_KEY is not set. "
				"Refusing to start without a master key. "
				"Generate one with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
			)
		secret_key = "test-only-secret-do-not-use-in-production"
		_log.debug("Using test-only secret key")

	nameservers = tuple(
		ns.strip()
		for ns in os.getenv("EASYACME_DNS_NAMESERVERS", ",".join(DEFAULT_NAMESERVERS)).split(",")
		if ns.strip()
	)

	return Config(
		base_dir=project_root,
		data_dir=data_dir,
		db_path=db_path,
		log_level=log_level,
		secret_key=secret_key,
		admin_token=os.getenv("EASYACME_ADMIN_TOKEN", ""),
		host=os.getenv("EASYACME_HOST", "0.0.0.0"),
		port=_env_int("EASYACME_PORT", 8000, minimum=1),
		http_timeout=_env_float("EASYACME_HTTP_TIMEOUT", 30.0, minimum=1.0),
		acme_poll_timeout=_env_float("EASYACME_ACME_POLL_TIMEOUT", 120.0, minimum=1.0),
		acme_poll_max_interval=_env_float("EASYACME_ACME_POLL_MAX_INTERVAL", 16.0, minimum=1.0),
		dns_propagation_check=_env_bool("EASYACME_DNS_PROPAGATION_CHECK", True),
		dns_propagation_timeout=_env_float("EASYACME_DNS_PROPAGATION_TIMEOUT", 120.0),
		dns_propagation_interval=_env_float("EASYACME_DNS_PROPAGATION_INTERVAL", 10.0, minimum=0.1),
		dns_propagation_delay=_env_float("EASYACME_DNS_PROPAGATION_DELAY", 30.0),
		dns_nameservers=nameservers or DEFAULT_NAMESERVERS,
		dns_retry_attempts=_env_int("EASYACME_DNS_RETRY_ATTEMPTS", 4, minimum=1),
		manual_dns_precheck=_env_bool("EASYACME_MANUAL_DNS_PRECHECK", False),
		session_ttl=_env_int("EASYACME_SESSION_TTL", 3600, minimum=60),
		issuance_timeout=_env_float("EASYACME_ISSUANCE_TIMEOUT", 900.0, minimum=10.0),
	)


# Global config singleton with thread-safe lazy initialization
_config: Config | None = None
_config_lock = threading.Lock()


def get_config() -> Config:
	"""Get the global config singleton (thread-safe)."""
	global _config
	if _config is None:
		with _config_lock:
			if _config is None:
				_config = load_config()
	return _config


def reset_config() -> None:
	"""Reset the cached config. Intended for tests only."""
	global _config
	with _config_lock:
		_config = None
