"""Tests for key generation, JOSE helpers, CSRs and certificate parsing."""

from __future__ import annotations

import base64
import hashlib
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from cryptography.x509.oid import NameOID

from easyacme.acme import keys


def _self_signed(names: list[str], *, days: int = 90, org: str | None = None) -> str:
	key = ec.generate_private_key(ec.SECP256R1())
	attrs = [x509.NameAttribute(NameOID.COMMON_NAME, names[0])]
	if org:
		attrs.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, org))
	subject = x509.Name(attrs)
	now = datetime.now(timezone.utc).replace(microsecond=0)
	cert = (
		x509.CertificateBuilder()
		.subject_name(subject)
		.issuer_name(subject)
		.public_key(key.public_key())
		.serial_number(0x1234)
		.not_valid_before(now)
		.not_valid_after(now + timedelta(days=days) - timedelta(seconds=1))
		.add_extension(x509.SubjectAlternativeName([x509.DNSName(n) for n in names]), critical=False)
		.sign(key, hashes.SHA256())
	)
	return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


# ---------------------------------------------------------------------------
# Key generation
# ---------------------------------------------------------------------------

class TestGeneratePrivateKey:
	@pytest.mark.parametrize("key_type, curve, alg", [
		("P256", "secp256r1", "ES256"),
		("P384", "secp384r1", "ES384"),
	])
	def test_ec_curves(self, key_type, curve, alg):
		key = keys.generate_private_key(key_type)
		assert isinstance(key, ec.EllipticCurvePrivateKey)
		assert key.curve.name == curve
		assert keys.jws_alg(key) == alg
		assert keys.key_type_of(key) == key_type

	@pytest.mark.parametrize("key_type", ["2048", "3072", "4096", "8192"])
	def test_rsa_sizes(self, key_type):
		key = keys.generate_private_key(key_type)
		assert isinstance(key, rsa.RSAPrivateKey)
		assert key.key_size == int(key_type)
		assert keys.jws_alg(key) == "RS256"
		assert keys.key_type_of(key) == key_type

	@pytest.mark.parametrize("key_type", keys.KEY_TYPES)
	def test_signature_verifies_with_public_key(self, key_type):
		key = keys.generate_private_key(key_type)
		signature = keys.sign(key, b"header.payload")
		public = key.public_key()
		if isinstance(key, ec.EllipticCurvePrivateKey):
			size = len(signature) // 2
			der = encode_dss_signature(
				int.from_bytes(signature[:size], "big"),
				int.from_bytes(signature[size:], "big"),
			)
			hash_cls = hashes.SHA256 if key_type == "P256" else hashes.SHA384
			public.verify(der, b"header.payload", ec.ECDSA(hash_cls()))
		else:
			assert len(signature) == key.key_size // 8
			public.verify(signature, b"header.payload", padding.PKCS1v15(), hashes.SHA256())

	def test_key_types_cover_the_enum(self):
		assert keys.KEY_TYPES == ("P256", "P384", "2048", "3072", "4096", "8192")

	def test_unknown_type_rejected(self):
		with pytest.raises(ValueError):
			keys.generate_private_key("P521")

	def test_pem_round_trip_keeps_type(self):
		key = keys.generate_private_key("P256")
		loaded = keys.load_private_key(keys.private_key_to_pem(key))
		assert keys.key_type_of(loaded) == "P256"


# ---------------------------------------------------------------------------
# JOSE helpers
# ---------------------------------------------------------------------------

class TestJose:
	def test_ec_jwk_coordinates_are_fixed_width(self):
		jwk = keys.jwk(keys.generate_private_key("P256"))
		assert jwk["kty"] == "EC"
		assert jwk["crv"] == "P-256"
		assert len(keys.b64url_decode(jwk["x"])) == 32
		assert len(keys.b64url_decode(jwk["y"])) == 32

	def test_ec_signature_is_raw_r_s(self):
		key = keys.generate_private_key("P384")
		assert len(keys.sign(key, b"payload")) == 96

	def test_thumbprint_ignores_extra_members(self):
		jwk = keys.jwk(keys.generate_private_key("P256"))
		assert keys.thumbprint(jwk) == keys.thumbprint({**jwk, "kid": "ignored"})

	def test_dns01_value_is_sha256_of_key_authorization(self):
		expected = base64.urlsafe_b64encode(
			hashlib.sha256(b"tok123.thumb456").digest()
		).rstrip(b"=").decode()
		assert keys.dns01_txt_value("tok123", "thumb456") == expected

	def test_challenge_fqdn_strips_wildcard(self):
		assert keys.challenge_fqdn("*.example.com") == "_acme-challenge.example.com"
		assert keys.challenge_fqdn("www.example.com") == "_acme-challenge.www.example.com"


# ---------------------------------------------------------------------------
# CSR and certificate parsing
# ---------------------------------------------------------------------------

class TestCsr:
	def test_all_domains_in_san_first_as_cn(self):
		key = keys.generate_private_key("P256")
		csr = keys.build_csr(key, ["example.com", "*.example.com"])
		san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
		assert san.get_values_for_type(x509.DNSName) == ["example.com", "*.example.com"]
		cn = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
		assert cn == "example.com"

	def test_long_first_name_omits_cn(self):
		long_name = ("a" * 60) + ".example.com"
		csr = keys.build_csr(keys.generate_private_key("P256"), [long_name])
		assert csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME) == []

	def test_empty_domain_list_rejected(self):
		with pytest.raises(ValueError):
			keys.build_csr(keys.generate_private_key("P256"), [])


class TestParseCertificateInfo:
	def test_dv_certificate(self):
		info = keys.parse_certificate_info(_self_signed(["example.com", "www.example.com"]))
		assert info.domains == ["example.com", "www.example.com"]
		assert info.cert_type == "DV"
		assert info.validity_days == 90
		assert info.serial == "1234"
		assert info.issuer_chain == ""

	def test_organization_makes_ov(self):
		info = keys.parse_certificate_info(_self_signed(["example.com"], org="Example Ltd"))
		assert info.cert_type == "OV"

	def test_issuer_chain_is_everything_after_leaf(self):
		leaf = _self_signed(["example.com"])
		issuer = _self_signed(["issuer.example"])
		info = keys.parse_certificate_info(leaf + issuer)
		assert info.issuer_chain.strip() == issuer.strip()

	def test_load_chain_keeps_leaf_first(self):
		chain = keys.load_chain(_self_signed(["example.com"]) + _self_signed(["issuer.example"]))
		names = [c.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value for c in chain]
		assert names == ["example.com", "issuer.example"]
		assert keys.leaf_der(keys.certificate_to_pem(chain[0])) == chain[0].public_bytes(serialization.Encoding.DER)

	def test_no_pem_rejected(self):
		with pytest.raises(ValueError):
			keys.parse_certificate_info("not a certificate")
