#!/usr/bin/env python3
#
# easyacme/services/issuance.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Fulfil authorization sessions and finalize their orders.

Each flow runs as an asyncio task owned by ``IssuanceManager`` rather than
by the HTTP request, so a client that disconnects does not interrupt it.
Only one flow per session can run: the session is claimed with a
compare-and-set from ``pending`` to ``processing`` first.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Any, Awaitable, Iterable, Optional, Union

from ..acme import keys
from ..acme.client import ACMEClient
from ..db import sqlite_certs, sqlite_dns, sqlite_sessions
from ..db.sqlite_runtime import close_connection, loads, transaction
from ..db.sqlite_sessions import ABANDONED, INVALID, PENDING, PROCESSING, VALID
from ..dns.base import DNSProvider, RecordHandle
from ..errors import (
	EasyAcmeError,
	FinalizationFailed,
	OperationTimeoutError,
	ResourceNotFoundError,
	StateConflictError,
	ValidationError,
)
from ..utils.time import utcnow
from .accounts import get_account_or_404, load_account_key
from .certificates import certificate_to_dict
from .challenges import AUTO, MANUAL, MODES, ChallengeOrchestrator, PrecheckFailed
from .context import ServiceContext
from .orders import create_order, get_session_or_404, normalize_domains, session_to_dict

_log = logging.getLogger(__name__)


def resolve_mode(
	mode: Optional[str],
	dns_provider_id: Union[int, str, None],
) -> tuple[str, Optional[int]]:
	"""Check the mode/provider combination and infer the mode when omitted."""
	provider_id: Optional[int] = None
	if isinstance(dns_provider_id, str):
		raw = dns_provider_id.strip()
		if not raw:
			raise ValidationError("dns_provider_id must not be empty; omit it for manual mode")
		if not raw.isdigit():
			raise ValidationError(f"dns_provider_id {dns_provider_id!r} is not a valid id")
		provider_id = int(raw)
	elif dns_provider_id is not None:
		provider_id = int(dns_provider_id)

	if mode is None:
		mode = AUTO if provider_id is not None else MANUAL
	if mode not in MODES:
		raise ValidationError(f"Unknown mode {mode!r}", allowed=list(MODES))
	if mode == AUTO and provider_id is None:
		raise ValidationError("Automatic mode needs a dns_provider_id")
	if mode == MANUAL and provider_id is not None:
		raise ValidationError("Manual mode does not take a dns_provider_id")
	return mode, provider_id


async def _first_failure(aws: Iterable[Awaitable[Any]]) -> list[Any]:
	"""Run awaitables concurrently; on the first error cancel the rest and raise it."""
	tasks = [asyncio.ensure_future(aw) for aw in aws]
	if not tasks:
		return []
	try:
		done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
		for task in done:
			if not task.cancelled() and task.exception() is not None:
				raise task.exception()
		return [task.result() for task in tasks]
	finally:
		for task in tasks:
			if not task.done():
				task.cancel()
		await asyncio.gather(*tasks, return_exceptions=True)


class IssuanceManager:
	"""Registry of running issuance flows."""

	def __init__(self, ctx: ServiceContext) -> None:
		self.ctx = ctx
		self.orchestrator = ChallengeOrchestrator(ctx.cfg)
		self._tasks: dict[str, asyncio.Task] = {}

	def is_running(self, session_id: str) -> bool:
		task = self._tasks.get(session_id)
		return task is not None and not task.done()

	# ------------------------------------------------------------------
	# Entry points
	# ------------------------------------------------------------------

	async def issue(
		self,
		conn: sqlite3.Connection,
		*,
		account_id: int,
		domains: list[str],
		key_type: str,
		session_id: Optional[str] = None,
		mode: Optional[str] = None,
		dns_provider_id: Union[int, str, None] = None,
	) -> dict[str, Any]:
		"""Pick (or open) the session for a request and run it to completion."""
		mode, provider_id = resolve_mode(mode, dns_provider_id)
		names = normalize_domains(domains)

		if session_id:
			row = get_session_or_404(conn, session_id)
			if (
				row["account_id"] != account_id
				or loads(row["domains"], []) != names
				or row["key_type"] != key_type
			):
				raise ValidationError(f"Session {session_id} was opened for a different account, domains or key type")
		else:
			row = sqlite_sessions.find_pending_session(
				conn, account_id=account_id, domains=names, key_type=key_type, now=utcnow(),
			)
			if row is not None:
				session_id = row["id"]
			elif mode == MANUAL:
				raise ValidationError("Manual mode needs the session_id returned by /acme/auth")
			else:
				created = await create_order(
					conn, self.ctx, account_id=account_id, domains=names, key_type=key_type,
				)
				session_id = created["id"]

		return await self.fulfill(session_id, mode=mode, dns_provider_id=provider_id)

	async def fulfill(
		self,
		session_id: str,
		*,
		mode: str,
		dns_provider_id: Optional[int] = None,
	) -> dict[str, Any]:
		"""Claim a pending session and wait for its flow to finish."""
		conn = self.ctx.connect()
		try:
			row = get_session_or_404(conn, session_id)
			if row["status"] != PENDING:
				raise StateConflictError(f"Session {session_id} is {row['status']}", session_status=row["status"])
			if row["expires_at"] <= utcnow():
				sqlite_sessions.update_session(
					conn, session_id, status=ABANDONED, error="expired", expected_status=PENDING,
				)
				raise StateConflictError(f"Session {session_id} has expired; request a new order")
			if row["mode"] and row["mode"] != mode:
				raise ValidationError(f"Session {session_id} is bound to {row['mode']} mode")
			if mode == AUTO and sqlite_dns.get_provider(conn, dns_provider_id) is None:
				raise ResourceNotFoundError(f"DNS provider {dns_provider_id} not found")
			if not sqlite_sessions.claim_session(conn, session_id, mode=mode, dns_provider_id=dns_provider_id):
				raise StateConflictError(f"Session {session_id} is already being processed")
		finally:
			close_connection(conn)

		_log.info("ISSUANCE_STARTED session=%s mode=%s dns_provider_id=%s", session_id, mode, dns_provider_id)
		task = asyncio.create_task(self._run(session_id, mode, dns_provider_id), name=f"issue-{session_id}")
		self._tasks[session_id] = task
		task.add_done_callback(lambda t: self._forget(session_id, t))
		try:
			return await asyncio.shield(task)
		except asyncio.CancelledError:
			if task.cancelled():
				raise StateConflictError(f"Session {session_id} was abandoned") from None
			raise

	def _forget(self, session_id: str, task: asyncio.Task) -> None:
		if self._tasks.get(session_id) is task:
			del self._tasks[session_id]
		# Mark the exception retrieved; the awaiting request may be gone
		if not task.cancelled():
			task.exception()

	async def abandon(self, session_id: str) -> dict[str, Any]:
		"""Cancel a running flow or close a pending session."""
		task = self._tasks.get(session_id)
		if task is not None and not task.done():
			task.cancel()
			await asyncio.wait([task])
		else:
			conn = self.ctx.connect()
			try:
				row = get_session_or_404(conn, session_id)
				if row["status"] not in (PENDING, PROCESSING):
					raise StateConflictError(f"Session {session_id} is already {row['status']}")
				# A processing row without a task here belongs to a dead process
				if not sqlite_sessions.update_session(
					conn, session_id, status=ABANDONED, error="abandoned", expected_status=row["status"],
				):
					raise StateConflictError(f"Session {session_id} changed state, try again")
			finally:
				close_connection(conn)
		_log.info("SESSION_ABANDONED session=%s", session_id)
		conn = self.ctx.connect()
		try:
			return session_to_dict(get_session_or_404(conn, session_id))
		finally:
			close_connection(conn)

	async def recover(self) -> int:
		"""Fail sessions a previous process left in ``processing``.

		DNS records they created are removed first, best effort.
		"""
		conn = self.ctx.connect()
		recovered = 0
		try:
			for row in sqlite_sessions.list_sessions_by_status(conn, PROCESSING):
				records = [RecordHandle.from_dict(r) for r in loads(row["dns_records"], [])]
				if records and row["dns_provider_id"] is not None:
					try:
						provider = self._provider(conn, row["dns_provider_id"])
						await self.orchestrator.cleanup(provider, records)
					except (EasyAcmeError, ValueError) as exc:
						_log.warning("SESSION_RECOVERY_CLEANUP_FAILED session=%s error=%s", row["id"], exc)
				if sqlite_sessions.update_session(
					conn, row["id"], status=INVALID, error="interrupted", dns_records=[],
					expected_status=PROCESSING,
				):
					recovered += 1
					_log.warning("SESSION_INTERRUPTED session=%s", row["id"])
		finally:
			close_connection(conn)
		return recovered

	async def shutdown(self, timeout: float = 10.0) -> None:
		tasks = [t for t in self._tasks.values() if not t.done()]
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.wait(tasks, timeout=timeout)

	# ------------------------------------------------------------------
	# Flow
	# ------------------------------------------------------------------

	def _provider(self, conn: sqlite3.Connection, provider_id: int) -> DNSProvider:
		cred = sqlite_dns.get_provider(conn, provider_id)
		if cred is None:
			raise ResourceNotFoundError(f"DNS provider {provider_id} not found")
		secret_key = self.ctx.secret_store(conn).get(cred["secret_key_ref"])
		return self.ctx.dns_provider(cred["type"], cred["secret_id"], secret_key)

	async def _run(self, session_id: str, mode: str, dns_provider_id: Optional[int]) -> dict[str, Any]:
		conn = self.ctx.connect()
		try:
			try:
				cert = await asyncio.wait_for(
					self._flow(conn, session_id, mode, dns_provider_id),
					timeout=self.ctx.cfg.issuance_timeout,
				)
			except asyncio.CancelledError:
				sqlite_sessions.update_session(conn, session_id, status=ABANDONED, error="abandoned")
				raise
			except PrecheckFailed:
				# Nothing was sent to the CA; the caller may retry later
				sqlite_sessions.update_session(
					conn, session_id, status=PENDING, expected_status=PROCESSING,
				)
				raise
			except EasyAcmeError as exc:
				self._fail(conn, session_id, exc.detail or exc.code)
				raise
			except asyncio.TimeoutError as exc:
				self._fail(conn, session_id, "issuance timed out")
				raise OperationTimeoutError(
					f"Issuance for session {session_id} exceeded {self.ctx.cfg.issuance_timeout:.0f}s",
				) from exc
			except Exception:
				_log.exception("ISSUANCE_CRASHED session=%s", session_id)
				self._fail(conn, session_id, "internal error")
				raise
			sqlite_sessions.update_session(conn, session_id, status=VALID, error=None)
			_log.info("ISSUANCE_FINISHED session=%s cert_id=%s", session_id, cert["id"])
			return cert
		finally:
			close_connection(conn)

	def _fail(self, conn: sqlite3.Connection, session_id: str, error: str) -> None:
		sqlite_sessions.update_session(conn, session_id, status=INVALID, error=error)
		_log.warning("ISSUANCE_FAILED session=%s error=%s", session_id, error)

	async def _flow(
		self,
		conn: sqlite3.Connection,
		session_id: str,
		mode: str,
		dns_provider_id: Optional[int],
	) -> dict[str, Any]:
		session = get_session_or_404(conn, session_id)
		account = get_account_or_404(conn, session["account_id"])
		account_key = load_account_key(self.ctx, conn, account)
		authorizations = loads(session["authorizations"], [])
		pending = [a for a in authorizations if a["status"] != "valid"]

		provider: Optional[DNSProvider] = None
		handles: list[RecordHandle] = []

		def _record(handle: RecordHandle) -> None:
			handles.append(handle)
			sqlite_sessions.update_session(conn, session_id, dns_records=[h.to_dict() for h in handles])

		try:
			if mode == AUTO and pending:
				provider = self._provider(conn, dns_provider_id)
				await self.orchestrator.publish(provider, pending, on_record=_record)
				await self.orchestrator.wait_for_propagation(pending)
			elif mode == MANUAL and pending and self.ctx.cfg.manual_dns_precheck:
				await self.orchestrator.precheck_manual(pending)

			async with self.ctx.acme_client(account["server"], account_key, account_url=account["uri"]) as client:
				await self._validate(conn, client, session_id, authorizations)
				return await self._finalize(
					conn, client, session, dns_provider_id if mode == AUTO else None,
				)
		finally:
			if provider is not None and handles:
				await self.orchestrator.cleanup(provider, handles)
				sqlite_sessions.update_session(conn, session_id, dns_records=[])

	async def _validate(
		self,
		conn: sqlite3.Connection,
		client: ACMEClient,
		session_id: str,
		authorizations: list[dict],
	) -> None:
		pending = [a for a in authorizations if a["status"] != "valid"]
		for authz in pending:
			await client.answer_challenge(authz["challenge_url"])
		deadline = asyncio.get_running_loop().time() + self.ctx.cfg.acme_poll_timeout
		await _first_failure(client.poll_authorization(a["url"], deadline) for a in pending)
		for authz in authorizations:
			authz["status"] = "valid"
		sqlite_sessions.update_session(conn, session_id, authorizations=authorizations)
		_log.info("AUTHORIZATIONS_VALID session=%s count=%d", session_id, len(authorizations))

	async def _finalize(
		self,
		conn: sqlite3.Connection,
		client: ACMEClient,
		session: sqlite3.Row,
		dns_provider_id: Optional[int],
	) -> dict[str, Any]:
		domains = loads(session["domains"], [])
		cert_key = await asyncio.to_thread(keys.generate_private_key, session["key_type"])
		csr = keys.build_csr(cert_key, domains)
		deadline = asyncio.get_running_loop().time() + self.ctx.cfg.acme_poll_timeout
		order = await client.finalize(session["finalize_url"], session["order_url"], keys.csr_to_der(csr), deadline)
		chain = await client.download_certificate(order["certificate"])

		info = keys.parse_certificate_info(chain)
		if set(info.domains) != set(domains):
			raise FinalizationFailed(
				f"Issued certificate covers {sorted(info.domains)}, requested {sorted(domains)}",
			)

		cert_id = session["cert_id"]
		row = sqlite_certs.get_cert(conn, cert_id) if cert_id is not None else None
		if row is None:
			raise ResourceNotFoundError("Certificate record was deleted during issuance")

		store = self.ctx.secret_store(conn)
		with transaction(conn, immediate=True):
			key_ref = store.put(keys.private_key_to_pem(cert_key))
			if not sqlite_certs.mark_issued(
				conn,
				cert_id,
				expected_version=row["version"],
				cert_type=info.cert_type,
				issued_at=info.issued_at,
				validity_days=info.validity_days,
				certificate=chain,
				issuer_certificate=info.issuer_chain,
				csr=keys.csr_to_pem(csr),
				private_key_ref=key_ref,
				cert_url=order["certificate"],
				cert_stable_url=order["certificate"],
				dns_provider_id=dns_provider_id,
			):
				raise StateConflictError(f"Certificate {cert_id} was modified during issuance")
		_log.info(
			"CERT_ISSUED id=%s serial=%s type=%s validity_days=%s",
			cert_id, info.serial, info.cert_type, info.validity_days,
		)
		return certificate_to_dict(sqlite_certs.get_cert(conn, cert_id))
