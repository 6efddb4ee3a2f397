"""Tests for the async ACME client against the in-process fake CA."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from easyacme.acme import keys
from easyacme.acme.client import ACMEClient
from easyacme.errors import (
	AuthorizationFailed,
	OperationTimeoutError,
	OrderError,
	RegistrationError,
)

from fake_ca import DIRECTORY_URL, FakeCA, _b64decode


def _client(ca: FakeCA, key=None, **kwargs) -> ACMEClient:
	return ACMEClient(DIRECTORY_URL, key or keys.generate_private_key("P256"), transport=ca.transport, **kwargs)


async def _register(ca: FakeCA, **kwargs):
	async with _client(ca) as client:
		return await client.register("ops@example.com", **kwargs)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

class TestRegister:
	def test_returns_account_url(self, fake_ca):
		url, account = asyncio.run(_register(fake_ca))
		assert url == "https://ca.test/acct/1"
		assert account["status"] == "valid"
		payload = fake_ca.accounts["1"]["payload"]
		assert payload["termsOfServiceAgreed"] is True
		assert payload["contact"] == ["mailto:ops@example.com"]

	def test_eab_binding_is_hs256_over_account_jwk(self, fake_ca):
		hmac_key = keys.b64url(b"0123456789abcdef0123456789abcdef")
		asyncio.run(_register(fake_ca, eab_kid="kid-1", eab_hmac_key=hmac_key))
		eab = fake_ca.accounts["1"]["payload"]["externalAccountBinding"]
		protected = json.loads(_b64decode(eab["protected"]))
		assert protected["alg"] == "HS256"
		assert protected["kid"] == "kid-1"
		assert protected["url"] == "https://ca.test/new-account"
		assert json.loads(_b64decode(eab["payload"]))["kty"] == "EC"

	def test_ca_problem_detail_is_kept_verbatim(self, fake_ca):
		fake_ca.fail_new_account = {
			"type": "urn:ietf:params:acme:error:externalAccountRequired",
			"detail": "This CA requires external account binding",
		}
		with pytest.raises(RegistrationError) as exc_info:
			asyncio.run(_register(fake_ca))
		assert exc_info.value.detail == "This CA requires external account binding"
		assert exc_info.value.short_type == "externalAccountRequired"

	def test_bad_nonce_is_retried_once(self, fake_ca):
		fake_ca.bad_nonce_once = True
		url, _ = asyncio.run(_register(fake_ca))
		assert url.startswith("https://ca.test/acct/")

	def test_unreachable_directory(self):
		def handler(request: httpx.Request) -> httpx.Response:
			raise httpx.ConnectError("connection refused", request=request)

		async def run():
			key = keys.generate_private_key("P256")
			async with ACMEClient(DIRECTORY_URL, key, transport=httpx.MockTransport(handler)) as client:
				await client.register("ops@example.com")

		with pytest.raises(RegistrationError, match="Cannot reach ACME directory"):
			asyncio.run(run())

	def test_deactivate(self, fake_ca):
		async def run():
			async with _client(fake_ca) as client:
				await client.register("ops@example.com")
				return await client.deactivate()

		assert asyncio.run(run())["status"] == "deactivated"
		assert fake_ca.accounts["1"]["status"] == "deactivated"


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class TestOrders:
	def test_new_order_and_dns01_values(self, fake_ca):
		async def run():
			async with _client(fake_ca) as client:
				await client.register("ops@example.com")
				order_url, order = await client.new_order(["example.com", "*.example.com"])
				authz = await client.get_authorization(order["authorizations"][1])
				return client, order_url, authz

		client, order_url, authz = asyncio.run(run())
		assert order_url.startswith("https://ca.test/order/")
		assert authz["wildcard"] is True
		assert authz["identifier"]["value"] == "example.com"
		token = authz["challenges"][0]["token"]
		assert client.dns01_value(token) == keys.dns01_txt_value(token, client.thumbprint)

	def test_new_order_without_authorizations_rejected(self, fake_ca):
		def handler(request: httpx.Request) -> httpx.Response:
			if request.url.path == "/new-order":
				return httpx.Response(
					201,
					json={"status": "pending", "authorizations": [], "finalize": ""},
					headers={"Location": "https://ca.test/order/9", "Replay-Nonce": "n"},
				)
			return fake_ca.handler(request)

		async def run():
			key = keys.generate_private_key("P256")
			async with ACMEClient(DIRECTORY_URL, key, transport=httpx.MockTransport(handler)) as client:
				await client.register("ops@example.com")
				await client.new_order(["example.com"])

		with pytest.raises(OrderError):
			asyncio.run(run())

	def test_invalid_authorization_carries_ca_detail(self, fake_ca):
		fake_ca.authz_outcome = "invalid"

		async def run():
			async with _client(fake_ca) as client:
				await client.register("ops@example.com")
				_, order = await client.new_order(["example.com"])
				authz_url = order["authorizations"][0]
				authz = await client.get_authorization(authz_url)
				await client.answer_challenge(authz["challenges"][0]["url"])
				deadline = asyncio.get_running_loop().time() + 5
				await client.poll_authorization(authz_url, deadline)

		with pytest.raises(AuthorizationFailed) as exc_info:
			asyncio.run(run())
		assert exc_info.value.detail == "Incorrect TXT record found at _acme-challenge.example.com"
		assert exc_info.value.short_type == "unauthorized"

	def test_pending_authorization_times_out(self, fake_ca):
		async def run():
			async with _client(fake_ca) as client:
				await client.register("ops@example.com")
				_, order = await client.new_order(["example.com"])
				deadline = asyncio.get_running_loop().time() + 0.2
				await client.poll_authorization(order["authorizations"][0], deadline)

		with pytest.raises(OperationTimeoutError):
			asyncio.run(run())

	def test_finalize_and_download(self, fake_ca):
		async def run():
			async with _client(fake_ca) as client:
				await client.register("ops@example.com")
				order_url, order = await client.new_order(["example.com"])
				authz = await client.get_authorization(order["authorizations"][0])
				await client.answer_challenge(authz["challenges"][0]["url"])
				cert_key = keys.generate_private_key("P256")
				csr = keys.build_csr(cert_key, ["example.com"])
				deadline = asyncio.get_running_loop().time() + 5
				done = await client.finalize(order["finalize"], order_url, keys.csr_to_der(csr), deadline)
				return await client.download_certificate(done["certificate"])

		chain = asyncio.run(run())
		info = keys.parse_certificate_info(chain)
		assert info.domains == ["example.com"]
		assert info.validity_days == 90
		assert "BEGIN CERTIFICATE" in info.issuer_chain


class TestRevoke:
	def test_revoke_sends_reason_with_kid(self, fake_ca):
		async def run():
			async with _client(fake_ca) as client:
				url, _ = await client.register("ops@example.com")
				_, order = await client.new_order(["example.com"])
				authz = await client.get_authorization(order["authorizations"][0])
				await client.answer_challenge(authz["challenges"][0]["url"])
				csr = keys.build_csr(keys.generate_private_key("P256"), ["example.com"])
				deadline = asyncio.get_running_loop().time() + 5
				done = await client.finalize(order["finalize"], "unused", keys.csr_to_der(csr), deadline)
				chain = await client.download_certificate(done["certificate"])
				await client.revoke(keys.leaf_der(chain), 4)
				return url

		account_url = asyncio.run(run())
		assert fake_ca.revoked[0]["reason"] == 4
		assert fake_ca.revoked[0]["kid"] == account_url
