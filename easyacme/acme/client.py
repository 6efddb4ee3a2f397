#!/usr/bin/env python3
#
# easyacme/acme/client.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Async ACME v2 client (RFC 8555) driving accounts, orders and revocation."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from typing import Optional

import httpx

from ..errors import (
	AcmeProtocolError,
	AuthorizationFailed,
	DeactivationError,
	FinalizationFailed,
	OperationTimeoutError,
	OrderError,
	RegistrationError,
	RevocationError,
)
from . import keys

_log = logging.getLogger(__name__)

_BAD_NONCE = "urn:ietf:params:acme:error:badNonce"
_JOSE_JSON = "application/jose+json"
_PEM_CHAIN = "application/pem-certificate-chain"
_USER_AGENT = "easyacme/0.1"

# Authorization/order states that will never turn valid
_FAILED_STATES = ("invalid", "deactivated", "expired", "revoked")


def _problem(resp: httpx.Response) -> dict:
	"""Parse an RFC 7807 problem document, falling back to the raw body."""
	try:
		body = resp.json()
		if isinstance(body, dict):
			return body
	except ValueError:
		pass
	return {"detail": resp.text[:500] or f"HTTP {resp.status_code}"}


def _retry_after(resp: httpx.Response) -> float | None:
	raw = resp.headers.get("Retry-After")
	if not raw:
		return None
	try:
		return max(0.0, float(raw))
	except ValueError:
		return None


def _challenge_error(authz: dict) -> dict | None:
	for challenge in authz.get("challenges", []):
		if challenge.get("error"):
			return challenge["error"]
	return None


class ACMEClient:
	"""ACME client bound to one directory and one account key.

	Usage::

		async with ACMEClient(directory_url, account_key) as client:
			account_url, account = await client.register("ops@example.com")
			order_url, order = await client.new_order(["example.com"])
	"""

	def __init__(
		self,
		directory_url: str,
		account_key: keys.PrivateKey,
		*,
		account_url: Optional[str] = None,
		timeout: float = 30.0,
		poll_max_interval: float = 16.0,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	):
		self.directory_url = directory_url
		self.account_key = account_key
		self.account_url = account_url
		self.timeout = timeout
		self.poll_max_interval = poll_max_interval
		self.directory: dict = {}
		self.nonce: Optional[str] = None
		self.http_client: Optional[httpx.AsyncClient] = None
		self._transport = transport
		self._jwk = keys.jwk(account_key)

	async def __aenter__(self):
		self.http_client = httpx.AsyncClient(
			timeout=self.timeout,
			transport=self._transport,
			headers={"User-Agent": _USER_AGENT},
		)
		return self

	async def __aexit__(self, *args):
		if self.http_client:
			await self.http_client.aclose()
			self.http_client = None

	@property
	def thumbprint(self) -> str:
		return keys.thumbprint(self._jwk)

	def dns01_value(self, token: str) -> str:
		"""TXT value the CA expects for ``token`` under this account."""
		return keys.dns01_txt_value(token, self.thumbprint)

	# ------------------------------------------------------------------
	# Transport
	# ------------------------------------------------------------------

	def _client(self) -> httpx.AsyncClient:
		if not self.http_client:
			raise RuntimeError("HTTP client not initialized")
		return self.http_client

	async def _fetch_directory(self, error_cls: type[AcmeProtocolError]) -> dict:
		if self.directory:
			return self.directory
		try:
			resp = await self._client().get(self.directory_url)
		except httpx.HTTPError as exc:
			raise error_cls(f"Cannot reach ACME directory {self.directory_url}: {exc}") from exc
		if resp.status_code != 200:
			raise error_cls.from_problem(_problem(resp), http_status=resp.status_code)
		try:
			directory = resp.json()
		except ValueError as exc:
			raise error_cls(f"ACME directory at {self.directory_url} is not JSON") from exc
		missing = [k for k in ("newNonce", "newAccount", "newOrder") if k not in directory]
		if missing:
			raise error_cls(f"ACME directory is missing {', '.join(missing)}")
		self.directory = directory
		return directory

	async def _get_nonce(self, error_cls: type[AcmeProtocolError]) -> str:
		if self.nonce:
			nonce, self.nonce = self.nonce, None
			return nonce

		directory = await self._fetch_directory(error_cls)
		client = self._client()
		try:
			resp = await client.head(directory["newNonce"])
			if "Replay-Nonce" not in resp.headers:
				resp = await client.get(directory["newNonce"])
		except httpx.HTTPError as exc:
			raise error_cls(f"Cannot obtain ACME nonce: {exc}") from exc
		if "Replay-Nonce" not in resp.headers:
			raise error_cls("ACME server did not return a Replay-Nonce")
		return resp.headers["Replay-Nonce"]

	def _jws(self, url: str, payload: Optional[dict], nonce: str, *, use_jwk: bool) -> dict:
		protected = {"alg": keys.jws_alg(self.account_key), "nonce": nonce, "url": url}
		if use_jwk or not self.account_url:
			protected["jwk"] = self._jwk
		else:
			protected["kid"] = self.account_url

		protected_b64 = keys.b64url(json.dumps(protected).encode("utf-8"))
		# POST-as-GET carries an empty payload
		payload_b64 = "" if payload is None else keys.b64url(json.dumps(payload).encode("utf-8"))
		signature = keys.sign(self.account_key, f"{protected_b64}.{payload_b64}".encode("ascii"))
		return {"protected": protected_b64, "payload": payload_b64, "signature": keys.b64url(signature)}

	async def _signed_request(
		self,
		url: str,
		payload: Optional[dict],
		*,
		error_cls: type[AcmeProtocolError] = AcmeProtocolError,
		use_jwk: bool = False,
		accept: str | None = None,
		ok_status: tuple[int, ...] = (200, 201),
	) -> httpx.Response:
		"""POST a JWS to the CA. Retries once when the CA rejects the nonce."""
		headers = {"Content-Type": _JOSE_JSON}
		if accept:
			headers["Accept"] = accept

		for attempt in (1, 2):
			nonce = await self._get_nonce(error_cls)
			body = self._jws(url, payload, nonce, use_jwk=use_jwk)
			try:
				resp = await self._client().post(url, content=json.dumps(body), headers=headers)
			except httpx.HTTPError as exc:
				raise error_cls(f"ACME request to {url} failed: {exc}") from exc

			if "Replay-Nonce" in resp.headers:
				self.nonce = resp.headers["Replay-Nonce"]

			if resp.status_code in ok_status:
				return resp

			problem = _problem(resp)
			if problem.get("type") == _BAD_NONCE and attempt == 1:
				_log.debug("ACME_BAD_NONCE url=%s, retrying", url)
				continue
			raise error_cls.from_problem(problem, http_status=resp.status_code)

		raise error_cls(f"ACME request to {url} failed")  # pragma: no cover

	def _json(self, resp: httpx.Response, error_cls: type[AcmeProtocolError]) -> dict:
		try:
			body = resp.json()
		except ValueError as exc:
			raise error_cls(f"Malformed ACME response from {resp.request.url}") from exc
		if not isinstance(body, dict):
			raise error_cls(f"Malformed ACME response from {resp.request.url}")
		return body

	async def _sleep_until_retry(self, delay: float, deadline: float, what: str) -> None:
		loop = asyncio.get_running_loop()
		remaining = deadline - loop.time()
		if remaining <= 0:
			raise OperationTimeoutError(f"Timed out waiting for {what}")
		await asyncio.sleep(min(delay, remaining))

	def _next_delay(self, delay: float, resp: httpx.Response) -> float:
		retry_after = _retry_after(resp)
		if retry_after is not None:
			return min(max(delay, retry_after), self.poll_max_interval * 4)
		return delay

	# ------------------------------------------------------------------
	# Accounts
	# ------------------------------------------------------------------

	def _eab_binding(self, url: str, kid: str, hmac_key: str) -> dict:
		"""External account binding JWS (RFC 8555 §7.3.4)."""
		try:
			mac_key = keys.b64url_decode(hmac_key.strip())
		except ValueError as exc:
			raise RegistrationError("EAB HMAC key is not valid base64url") from exc
		protected_b64 = keys.b64url(json.dumps({"alg": "HS256", "kid": kid, "url": url}).encode("utf-8"))
		payload_b64 = keys.b64url(json.dumps(self._jwk).encode("utf-8"))
		mac = hmac.new(mac_key, f"{protected_b64}.{payload_b64}".encode("ascii"), hashlib.sha256).digest()
		return {"protected": protected_b64, "payload": payload_b64, "signature": keys.b64url(mac)}

	async def register(
		self,
		email: str,
		*,
		eab_kid: str | None = None,
		eab_hmac_key: str | None = None,
	) -> tuple[str, dict]:
		"""Create (or look up) the account for this key. Returns (url, account)."""
		directory = await self._fetch_directory(RegistrationError)
		url = directory["newAccount"]
		payload: dict = {"termsOfServiceAgreed": True, "contact": [f"mailto:{email}"]}
		if eab_kid and eab_hmac_key:
			payload["externalAccountBinding"] = self._eab_binding(url, eab_kid, eab_hmac_key)

		resp = await self._signed_request(url, payload, error_cls=RegistrationError, use_jwk=True)
		account_url = resp.headers.get("Location")
		if not account_url:
			raise RegistrationError("ACME server did not return an account URL")
		account = self._json(resp, RegistrationError)
		self.account_url = account_url
		_log.info("ACME_ACCOUNT_REGISTERED url=%s status=%s", account_url, account.get("status"))
		return account_url, account

	async def deactivate(self) -> dict:
		if not self.account_url:
			raise DeactivationError("Account URL unknown")
		resp = await self._signed_request(
			self.account_url, {"status": "deactivated"}, error_cls=DeactivationError,
		)
		return self._json(resp, DeactivationError)

	# ------------------------------------------------------------------
	# Orders and authorizations
	# ------------------------------------------------------------------

	async def new_order(self, domains: list[str]) -> tuple[str, dict]:
		directory = await self._fetch_directory(OrderError)
		payload = {"identifiers": [{"type": "dns", "value": d} for d in domains]}
		resp = await self._signed_request(directory["newOrder"], payload, error_cls=OrderError)
		order_url = resp.headers.get("Location")
		if not order_url:
			raise OrderError("ACME server did not return an order URL")
		order = self._json(resp, OrderError)
		if not order.get("authorizations") or not order.get("finalize"):
			raise OrderError("ACME order is missing authorizations or finalize URL")
		return order_url, order

	async def get_authorization(
		self, url: str, *, error_cls: type[AcmeProtocolError] = OrderError,
	) -> dict:
		resp = await self._signed_request(url, None, error_cls=error_cls)
		return self._json(resp, error_cls)

	async def get_order(self, url: str, *, error_cls: type[AcmeProtocolError] = OrderError) -> dict:
		resp = await self._signed_request(url, None, error_cls=error_cls)
		return self._json(resp, error_cls)

	async def answer_challenge(self, url: str) -> dict:
		"""Tell the CA the challenge is ready to be validated."""
		resp = await self._signed_request(url, {}, error_cls=AuthorizationFailed)
		return self._json(resp, AuthorizationFailed)

	async def poll_authorization(self, url: str, deadline: float) -> dict:
		"""Poll an authorization until it is valid.

		Backs off 2s, 4s, 8s ... capped at ``poll_max_interval`` (a larger
		Retry-After from the CA wins). ``deadline`` is a loop.time() value.
		"""
		delay = 2.0
		while True:
			resp = await self._signed_request(url, None, error_cls=AuthorizationFailed)
			authz = self._json(resp, AuthorizationFailed)
			status = authz.get("status")
			domain = authz.get("identifier", {}).get("value", url)
			if status == "valid":
				return authz
			if status in _FAILED_STATES:
				problem = _challenge_error(authz) or {"detail": f"Authorization for {domain} is {status}"}
				raise AuthorizationFailed.from_problem(problem)
			await self._sleep_until_retry(
				self._next_delay(delay, resp), deadline, f"authorization of {domain} (status {status})",
			)
			delay = min(delay * 2, self.poll_max_interval)

	async def finalize(self, finalize_url: str, order_url: str, csr_der: bytes, deadline: float) -> dict:
		"""Submit the CSR and poll the order until the certificate is ready."""
		resp = await self._signed_request(
			finalize_url, {"csr": keys.b64url(csr_der)}, error_cls=FinalizationFailed,
		)
		order = self._json(resp, FinalizationFailed)
		delay = 1.0
		while True:
			status = order.get("status")
			if status == "valid" and order.get("certificate"):
				return order
			if status in _FAILED_STATES:
				raise FinalizationFailed.from_problem(
					order.get("error"), fallback=f"Order is {status} after finalization",
				)
			await self._sleep_until_retry(self._next_delay(delay, resp), deadline, "order finalization")
			delay = min(delay * 2, self.poll_max_interval)
			resp = await self._signed_request(order_url, None, error_cls=FinalizationFailed)
			order = self._json(resp, FinalizationFailed)

	async def download_certificate(self, cert_url: str) -> str:
		"""Download the full PEM chain (leaf first)."""
		resp = await self._signed_request(cert_url, None, error_cls=FinalizationFailed, accept=_PEM_CHAIN)
		pem = resp.text
		if "-----BEGIN CERTIFICATE-----" not in pem:
			raise FinalizationFailed("Certificate download did not return PEM data")
		return pem

	# ------------------------------------------------------------------
	# Revocation
	# ------------------------------------------------------------------

	async def revoke(self, cert_der: bytes, reason: int | None = None) -> None:
		directory = await self._fetch_directory(RevocationError)
		if "revokeCert" not in directory:
			raise RevocationError("ACME server does not support revocation")
		payload: dict = {"certificate": keys.b64url(cert_der)}
		if reason is not None:
			payload["reason"] = reason
		await self._signed_request(directory["revokeCert"], payload, error_cls=RevocationError)
