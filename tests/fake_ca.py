"""In-process ACME server served through ``httpx.MockTransport``.

Implements just enough of RFC 8555 for the client and the issuance flow:
directory, nonces, accounts, orders, dns-01 authorizations, finalization,
certificate download and revocation. Leaf certificates are really signed
from the submitted CSR so the parsing and SAN checks run on real data.
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Optional

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

BASE = "https://ca.test"
DIRECTORY_URL = f"{BASE}/directory"


def _b64decode(data: str) -> bytes:
	return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _pem(cert: x509.Certificate) -> str:
	return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


class FakeCA:
	"""Mutable ACME server state plus knobs to provoke failures.

	- ``authz_outcome``: status an authorization takes once its challenge is answered
	- ``extra_san``: name added to every issued certificate (SAN mismatch)
	- ``fail_new_account``: problem document returned by newAccount
	- ``bad_nonce_once``: reject the next signed request with badNonce
	- ``fail_revoke``: problem document returned by revokeCert
	"""

	def __init__(self) -> None:
		self.authz_outcome = "valid"
		self.extra_san: Optional[str] = None
		self.fail_new_account: Optional[dict] = None
		self.bad_nonce_once = False
		self.fail_revoke: Optional[dict] = None

		self.accounts: dict[str, dict] = {}
		self.orders: dict[str, dict] = {}
		self.authzs: dict[str, dict] = {}
		self.certs: dict[str, str] = {}
		self.answered: list[str] = []
		self.revoked: list[dict] = []
		self.requests: list[tuple[str, str]] = []

		self._ids = count(1)
		self._nonces = count(1)
		self._ca_key = ec.generate_private_key(ec.SECP256R1())
		now = datetime.now(timezone.utc)
		name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Fake ACME Root")])
		self.ca_cert = (
			x509.CertificateBuilder()
			.subject_name(name)
			.issuer_name(name)
			.public_key(self._ca_key.public_key())
			.serial_number(x509.random_serial_number())
			.not_valid_before(now - timedelta(days=1))
			.not_valid_after(now + timedelta(days=3650))
			.add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
			.sign(self._ca_key, hashes.SHA256())
		)

	@property
	def transport(self) -> httpx.MockTransport:
		return httpx.MockTransport(self.handler)

	# ------------------------------------------------------------------
	# Helpers
	# ------------------------------------------------------------------

	def _headers(self, **extra: str) -> dict[str, str]:
		return {"Replay-Nonce": f"nonce-{next(self._nonces)}", **extra}

	def _json(self, status: int, body, **headers: str) -> httpx.Response:
		return httpx.Response(status, json=body, headers=self._headers(**headers))

	def _problem(self, status: int, type_: str, detail: str) -> httpx.Response:
		return httpx.Response(
			status,
			json={"type": f"urn:ietf:params:acme:error:{type_}", "detail": detail},
			headers=self._headers(**{"Content-Type": "application/problem+json"}),
		)

	@staticmethod
	def _payload(request: httpx.Request) -> Optional[dict]:
		body = json.loads(request.content)
		if not body.get("payload"):
			return None
		return json.loads(_b64decode(body["payload"]))

	@staticmethod
	def _protected(request: httpx.Request) -> dict:
		body = json.loads(request.content)
		return json.loads(_b64decode(body["protected"]))

	def _authz_body(self, authz_id: str) -> dict:
		authz = self.authzs[authz_id]
		challenge = {
			"type": "dns-01",
			"url": f"{BASE}/chall/{authz_id}",
			"token": authz["token"],
			"status": authz["challenge_status"],
		}
		if authz.get("error"):
			challenge["error"] = authz["error"]
		body = {
			"status": authz["status"],
			"identifier": {"type": "dns", "value": authz["identifier"]},
			"challenges": [challenge],
		}
		if authz["wildcard"]:
			body["wildcard"] = True
		return body

	def _order_body(self, order_id: str) -> dict:
		order = self.orders[order_id]
		body = {
			"status": order["status"],
			"expires": order["expires"],
			"identifiers": [{"type": "dns", "value": d} for d in order["domains"]],
			"authorizations": [f"{BASE}/authz/{a}" for a in order["authzs"]],
			"finalize": f"{BASE}/order/{order_id}/finalize",
		}
		if order.get("certificate"):
			body["certificate"] = order["certificate"]
		return body

	def _issue(self, csr_der: bytes) -> str:
		csr = x509.load_der_x509_csr(csr_der)
		san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
		names = san.get_values_for_type(x509.DNSName)
		if self.extra_san:
			names = [*names, self.extra_san]
		now = datetime.now(timezone.utc).replace(microsecond=0)
		leaf = (
			x509.CertificateBuilder()
			.subject_name(csr.subject)
			.issuer_name(self.ca_cert.subject)
			.public_key(csr.public_key())
			.serial_number(x509.random_serial_number())
			.not_valid_before(now)
			.not_valid_after(now + timedelta(days=90) - timedelta(seconds=1))
			.add_extension(x509.SubjectAlternativeName([x509.DNSName(n) for n in names]), critical=False)
			.sign(self._ca_key, hashes.SHA256())
		)
		return _pem(leaf) + _pem(self.ca_cert)

	# ------------------------------------------------------------------
	# Routing
	# ------------------------------------------------------------------

	def handler(self, request: httpx.Request) -> httpx.Response:
		path = request.url.path
		self.requests.append((request.method, path))

		if path == "/directory":
			return httpx.Response(200, json={
				"newNonce": f"{BASE}/new-nonce",
				"newAccount": f"{BASE}/new-account",
				"newOrder": f"{BASE}/new-order",
				"revokeCert": f"{BASE}/revoke-cert",
			})
		if path == "/new-nonce":
			return httpx.Response(200, headers=self._headers())

		if request.method != "POST":
			return httpx.Response(405)
		if self.bad_nonce_once:
			self.bad_nonce_once = False
			return self._problem(400, "badNonce", "stale nonce")

		payload = self._payload(request)
		parts = path.strip("/").split("/")

		if path == "/new-account":
			if self.fail_new_account:
				return httpx.Response(
					400, json=self.fail_new_account, headers=self._headers(),
				)
			account_id = str(next(self._ids))
			url = f"{BASE}/acct/{account_id}"
			self.accounts[account_id] = {"status": "valid", "payload": payload}
			return self._json(201, {"status": "valid", "contact": payload.get("contact", [])}, Location=url)

		if parts[0] == "acct":
			account = self.accounts[parts[1]]
			if payload and payload.get("status") == "deactivated":
				account["status"] = "deactivated"
			return self._json(200, {"status": account["status"]})

		if path == "/new-order":
			order_id = str(next(self._ids))
			domains = [i["value"] for i in payload["identifiers"]]
			authz_ids = []
			for domain in domains:
				authz_id = str(next(self._ids))
				wildcard = domain.startswith("*.")
				self.authzs[authz_id] = {
					"identifier": domain[2:] if wildcard else domain,
					"wildcard": wildcard,
					"token": f"token-{authz_id}",
					"status": "pending",
					"challenge_status": "pending",
				}
				authz_ids.append(authz_id)
			expires = (datetime.now(timezone.utc) + timedelta(days=7)).strftime("%Y-%m-%dT%H:%M:%SZ")
			self.orders[order_id] = {
				"status": "pending", "domains": domains, "authzs": authz_ids, "expires": expires,
			}
			return self._json(201, self._order_body(order_id), Location=f"{BASE}/order/{order_id}")

		if parts[0] == "authz":
			return self._json(200, self._authz_body(parts[1]))

		if parts[0] == "chall":
			authz = self.authzs[parts[1]]
			self.answered.append(parts[1])
			authz["status"] = self.authz_outcome
			authz["challenge_status"] = self.authz_outcome
			if self.authz_outcome == "invalid":
				authz["error"] = {
					"type": "urn:ietf:params:acme:error:unauthorized",
					"detail": f"Incorrect TXT record found at _acme-challenge.{authz['identifier']}",
				}
			return self._json(200, self._authz_body(parts[1])["challenges"][0])

		if parts[0] == "order" and len(parts) == 3 and parts[2] == "finalize":
			order = self.orders[parts[1]]
			if any(self.authzs[a]["status"] != "valid" for a in order["authzs"]):
				return self._problem(403, "orderNotReady", "Order is not ready")
			cert_id = str(next(self._ids))
			self.certs[cert_id] = self._issue(_b64decode(payload["csr"]))
			order["status"] = "valid"
			order["certificate"] = f"{BASE}/cert/{cert_id}"
			return self._json(200, self._order_body(parts[1]))

		if parts[0] == "order":
			return self._json(200, self._order_body(parts[1]))

		if parts[0] == "cert":
			return httpx.Response(
				200,
				text=self.certs[parts[1]],
				headers=self._headers(**{"Content-Type": "application/pem-certificate-chain"}),
			)

		if path == "/revoke-cert":
			if self.fail_revoke:
				return httpx.Response(
					403, json=self.fail_revoke, headers=self._headers(**{"Content-Type": "application/problem+json"}),
				)
			der = _b64decode(payload["certificate"])
			serial = x509.load_der_x509_certificate(der).serial_number
			if any(r["serial"] == serial for r in self.revoked):
				return self._problem(400, "alreadyRevoked", "Certificate already revoked")
			self.revoked.append({"serial": serial, "reason": payload.get("reason"), "kid": self._protected(request).get("kid")})
			return httpx.Response(200, headers=self._headers())

		return self._problem(404, "malformed", f"Unknown resource {path}")
