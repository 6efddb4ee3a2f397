#!/usr/bin/env python3
#
# easyacme/api/stats.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends, Query

from ..services.certificates import dashboard_stats
from ..utils.deps import get_conn
from .auth import require_permission
from .response import ok_response

router = APIRouter(tags=["dashboard"])


@router.get("/dashboard/stats")
def get_stats(
	months: int = Query(6, ge=1, le=24),
	conn: sqlite3.Connection = Depends(get_conn),
	_: sqlite3.Row = Depends(require_permission("dashboard:stats")),
):
	"""Counts of accounts, certificates and DNS providers, plus monthly issuance."""
	return ok_response(data=dashboard_stats(conn, months=months))
