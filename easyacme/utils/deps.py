#!/usr/bin/env python3
#
# easyacme/utils/deps.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI dependency helpers."""

from __future__ import annotations

from collections.abc import Generator

from fastapi import Request

from ..db.sqlite_runtime import close_connection, connect


def get_conn(request: Request) -> Generator:
	"""Yield a per-request SQLite connection."""
	conn = connect(request.app.state.db_path)
	try:
		yield conn
	finally:
		close_connection(conn)


def get_config(request: Request):
	"""Get the application configuration from app state."""
	return request.app.state.cfg


def get_context(request: Request):
	"""Get the shared service context (config plus outbound client factories)."""
	return request.app.state.ctx


def get_issuance(request: Request):
	"""Get the process-wide issuance manager."""
	return request.app.state.issuance
