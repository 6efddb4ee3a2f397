#!/usr/bin/env python3
#
# easyacme/main.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI application factory and startup lifecycle wiring."""

from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .db.sqlite_runtime import (
	checkpoint_wal,
	close_all_connections,
	close_connection,
	connect,
)
from .db.sqlite_schema import ensure_admin_token, init_schema
from .errors import EasyAcmeError
from .services.context import ServiceContext
from .services.issuance import IssuanceManager
from .utils.config import load_config
from .utils.rate_limit import limiter
from .utils.request_id import RequestIDMiddleware
from .utils.scheduler import Scheduler

from .api import acme_accounts as accounts_api
from .api import acme_certs as certs_api
from .api import auth as auth_api
from .api import dns_providers as dns_api
from .api import stats as stats_api

_log = logging.getLogger(__name__)

# ANSI color codes for log levels (if TTY)
_LOG_COLORS = {
	"DEBUG": "\033[36m",    # Cyan
	"INFO": "\033[32m",     # Green
	"WARNING": "\033[33m",  # Yellow
	"ERROR": "\033[31m",    # Red
	"CRITICAL": "\033[35m", # Magenta
}
_RESET = "\033[0m"


class _ColoredFormatter(logging.Formatter):
	"""Adds color to the level name on a TTY."""

	def format(self, record):
		orig_levelname = record.levelname
		if orig_levelname in _LOG_COLORS:
			record.levelname = f"{_LOG_COLORS[orig_levelname]}{orig_levelname:<8}{_RESET}"
		else:
			record.levelname = f"{orig_levelname:<8}"
		try:
			return super().format(record)
		finally:
			record.levelname = orig_levelname


def _setup_logging(log_level: str) -> None:
	"""Configure unified logging for the entire application."""
	level = getattr(logging, log_level, logging.INFO)

	if sys.stdout.isatty():
		formatter = _ColoredFormatter(
			fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
			datefmt="%Y-%m-%d %H:%M:%S",
		)
	else:
		formatter = logging.Formatter(
			fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
			datefmt="%Y-%m-%d %H:%M:%S",
		)

	# force=True drops handlers installed earlier (e.g. by uvicorn)
	logging.basicConfig(
		level=level,
		handlers=[logging.StreamHandler(sys.stdout)],
		force=True,
	)
	for handler in logging.root.handlers:
		handler.setFormatter(formatter)

	for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
		logger = logging.getLogger(name)
		logger.handlers.clear()
		logger.setLevel(level)
		logger.propagate = True

	# Quiet down noisy third-party libraries
	for name in ("httpcore", "httpx", "botocore", "boto3", "urllib3"):
		logging.getLogger(name).setLevel(logging.WARNING)


@asynccontextmanager
async def _lifespan(app: FastAPI):
	"""Application lifespan manager."""
	cfg = app.state.cfg

	# ─── BOOTSTRAP ───────────────────────────────────────────
	conn = connect(cfg.db_path)
	try:
		init_schema(conn)
		if cfg.admin_token:
			ensure_admin_token(conn, cfg.admin_token)
	finally:
		close_connection(conn)

	ctx = ServiceContext(cfg)
	issuance = IssuanceManager(ctx)
	recovered = await issuance.recover()
	if recovered:
		_log.warning("Marked %d interrupted issuance session(s) invalid", recovered)

	app.state.ctx = ctx
	app.state.issuance = issuance

	# ─── SCHEDULED TASKS ─────────────────────────────────────
	from .tasks.maintenance import (
		purge_finished_sessions,
		sqlite_maintenance,
		sweep_expired_certificates,
	)

	scheduler = Scheduler()
	scheduler.add(
		"cert-expiry-sweep",
		interval_seconds=3600,  # 1 hour
		func=partial(sweep_expired_certificates, cfg.db_path),
		run_on_start=True,
		initial_delay=30.0,
		timeout=60.0,
	)
	scheduler.add(
		"session-purge",
		interval_seconds=3600,  # 1 hour
		func=partial(purge_finished_sessions, cfg.db_path),
		run_on_start=True,
		initial_delay=45.0,
		timeout=60.0,
	)
	scheduler.add(
		"sqlite-maintenance",
		interval_seconds=21600,  # 6 hours
		func=partial(sqlite_maintenance, cfg.db_path),
		run_on_start=True,
		initial_delay=60.0,
		timeout=60.0,
	)
	await scheduler.start()
	app.state.scheduler = scheduler

	_log.info("easyacme started successfully (pid=%d)", os.getpid())

	yield

	# ─── SHUTDOWN ────────────────────────────────────────────
	await scheduler.stop_graceful(timeout=5.0)
	await issuance.shutdown()

	closed = close_all_connections()
	if closed:
		_log.debug("Closed %d SQLite connection(s)", closed)
	checkpoint_wal(cfg.db_path)
	_log.info("easyacme stopped")


async def _domain_error_handler(request: Request, exc: EasyAcmeError) -> JSONResponse:
	if exc.status_code >= 500:
		_log.warning("REQUEST_FAILED path=%s error=%s detail=%s", request.url.path, exc.code, exc.detail)
	return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
	"""Application factory for easyacme."""
	cfg = load_config()
	_setup_logging(cfg.log_level)

	app = FastAPI(
		title="easyacme",
		description="ACME certificate lifecycle backend with DNS-01 automation",
		version="0.1.0",
		lifespan=_lifespan,
		docs_url="/api/docs",
		redoc_url="/api/redoc",
	)

	app.state.cfg = cfg
	app.state.db_path = cfg.db_path

	# ─── MIDDLEWARE ──────────────────────────────────────────
	app.add_middleware(RequestIDMiddleware)

	# Rate limiting
	app.state.limiter = limiter
	app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
	app.add_exception_handler(EasyAcmeError, _domain_error_handler)

	# ─── API ROUTES ──────────────────────────────────────────
	app.include_router(auth_api.router, prefix="/api")
	app.include_router(accounts_api.router, prefix="/api/acme/accounts")
	app.include_router(certs_api.router, prefix="/api")
	app.include_router(dns_api.router, prefix="/api/dns/provider")
	app.include_router(stats_api.router, prefix="/api")

	@app.get("/api/health", tags=["health"])
	def health():
		return {"status": "ok"}

	return app
