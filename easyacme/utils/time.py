#!/usr/bin/env python3
#
# easyacme/utils/time.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Timezone-aware time utilities."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
	"""Return the current UTC time as a timezone-aware datetime."""
	return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
	"""Convert an aware datetime to UTC. Naive datetimes are rejected."""
	if dt is None:
		return None
	if dt.tzinfo is None:
		raise ValueError("Naive datetime not allowed - must be timezone-aware")
	return dt.astimezone(timezone.utc)


def parse_utc(s: str | None) -> Optional[datetime]:
	"""Parse an RFC 3339 timestamp (as sent by ACME servers) to UTC.

	Accepts the ``Z`` suffix and fractional seconds of any precision.
	Returns None for unparseable or naive timestamps.
	"""
	if not s:
		return None
	try:
		if s.endswith("Z"):
			s = s[:-1] + "+00:00"
		# Trim nanosecond precision to what fromisoformat understands
		if "." in s:
			head, _, tail = s.partition(".")
			digits = ""
			while tail and tail[0].isdigit():
				digits, tail = digits + tail[0], tail[1:]
			s = f"{head}.{digits[:6].ljust(6, '0')}{tail}"
		dt = datetime.fromisoformat(s)
		if dt.tzinfo is None:
			return None
		return dt.astimezone(timezone.utc)
	except (ValueError, TypeError):
		return None


def to_iso(dt: Optional[datetime]) -> Optional[str]:
	"""Format a datetime as ISO-8601 with a ``Z`` suffix."""
	if dt is None:
		return None
	return ensure_utc(dt).isoformat().replace("+00:00", "Z")
