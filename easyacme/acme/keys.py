#!/usr/bin/env python3
#
# easyacme/acme/keys.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Key generation, JOSE signing primitives, CSRs and certificate parsing."""

from __future__ import annotations

import base64
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import ExtensionOID, NameOID

PrivateKey = Union[ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey]

# Order matters: it is the order offered to API clients
KEY_TYPES = ("P256", "P384", "2048", "3072", "4096", "8192")

_EC_CURVES = {
	"P256": (ec.SECP256R1, "P-256", "ES256", hashes.SHA256, 32),
	"P384": (ec.SECP384R1, "P-384", "ES384", hashes.SHA384, 48),
}
_RSA_SIZES = {"2048": 2048, "3072": 3072, "4096": 4096, "8192": 8192}

# CA/Browser Forum EV policy identifier
_EV_POLICY_OID = x509.ObjectIdentifier("2.23.140.1.1")


def b64url(data: bytes) -> str:
	"""Base64url encode without padding."""
	return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
	return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def generate_private_key(key_type: str) -> PrivateKey:
	"""Generate a key of exactly the requested curve or modulus size."""
	if key_type in _EC_CURVES:
		return ec.generate_private_key(_EC_CURVES[key_type][0]())
	if key_type in _RSA_SIZES:
		return rsa.generate_private_key(public_exponent=65537, key_size=_RSA_SIZES[key_type])
	raise ValueError(f"Unsupported key type {key_type!r}, expected one of {', '.join(KEY_TYPES)}")


def key_type_of(key: PrivateKey) -> str:
	"""Map a key back to its key_type label."""
	if isinstance(key, ec.EllipticCurvePrivateKey):
		for label, (curve, *_rest) in _EC_CURVES.items():
			if isinstance(key.curve, curve):
				return label
		raise ValueError(f"Unsupported curve {key.curve.name}")
	if isinstance(key, rsa.RSAPrivateKey):
		label = str(key.key_size)
		if label in _RSA_SIZES:
			return label
		raise ValueError(f"Unsupported RSA key size {key.key_size}")
	raise ValueError(f"Unsupported key class {type(key).__name__}")


def private_key_to_pem(key: PrivateKey) -> str:
	return key.private_bytes(
		encoding=serialization.Encoding.PEM,
		format=serialization.PrivateFormat.PKCS8,
		encryption_algorithm=serialization.NoEncryption(),
	).decode("ascii")


def load_private_key(pem: str) -> PrivateKey:
	key = serialization.load_pem_private_key(pem.encode("ascii"), password=None)
	if not isinstance(key, (ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey)):
		raise ValueError("Only EC and RSA keys are supported")
	return key


# ---------------------------------------------------------------------------
# JOSE
# ---------------------------------------------------------------------------

def jwk(key: PrivateKey) -> dict:
	"""Public JWK of a private key (RFC 7517)."""
	if isinstance(key, ec.EllipticCurvePrivateKey):
		_, crv, _, _, size = _EC_CURVES[key_type_of(key)]
		numbers = key.public_key().public_numbers()
		return {
			"kty": "EC",
			"crv": crv,
			"x": b64url(numbers.x.to_bytes(size, "big")),
			"y": b64url(numbers.y.to_bytes(size, "big")),
		}
	numbers = key.public_key().public_numbers()
	return {
		"kty": "RSA",
		"e": b64url(numbers.e.to_bytes((numbers.e.bit_length() + 7) // 8, "big")),
		"n": b64url(numbers.n.to_bytes((numbers.n.bit_length() + 7) // 8, "big")),
	}


def jws_alg(key: PrivateKey) -> str:
	if isinstance(key, ec.EllipticCurvePrivateKey):
		return _EC_CURVES[key_type_of(key)][2]
	return "RS256"


def sign(key: PrivateKey, data: bytes) -> bytes:
	"""Produce a raw JWS signature over ``data``.

	ECDSA signatures are converted from DER to the fixed-width r || s form.
	"""
	if isinstance(key, ec.EllipticCurvePrivateKey):
		_, _, _, hash_cls, size = _EC_CURVES[key_type_of(key)]
		r, s = decode_dss_signature(key.sign(data, ec.ECDSA(hash_cls())))
		return r.to_bytes(size, "big") + s.to_bytes(size, "big")
	return key.sign(data, padding.PKCS1v15(), hashes.SHA256())


def thumbprint(jwk_dict: dict) -> str:
	"""JWK thumbprint (RFC 7638)."""
	if jwk_dict.get("kty") == "EC":
		canonical = {"crv": jwk_dict["crv"], "kty": "EC", "x": jwk_dict["x"], "y": jwk_dict["y"]}
	elif jwk_dict.get("kty") == "RSA":
		canonical = {"e": jwk_dict["e"], "kty": "RSA", "n": jwk_dict["n"]}
	else:
		raise ValueError(f"Unsupported key type: {jwk_dict.get('kty')}")
	canonical_json = json.dumps(canonical, separators=(",", ":"), sort_keys=True)
	return b64url(hashlib.sha256(canonical_json.encode("utf-8")).digest())


def dns01_txt_value(token: str, account_thumbprint: str) -> str:
	"""TXT record content for a DNS-01 challenge (RFC 8555 §8.4)."""
	key_authorization = f"{token}.{account_thumbprint}"
	return b64url(hashlib.sha256(key_authorization.encode("ascii")).digest())


def challenge_fqdn(domain: str) -> str:
	"""Record name for a DNS-01 challenge. Wildcards validate at the base name."""
	if domain.startswith("*."):
		domain = domain[2:]
	return f"_acme-challenge.{domain}"


# ---------------------------------------------------------------------------
# CSR and certificates
# ---------------------------------------------------------------------------

def build_csr(key: PrivateKey, domains: list[str]) -> x509.CertificateSigningRequest:
	"""CSR with CN = first domain and every domain as a SAN."""
	if not domains:
		raise ValueError("At least one domain is required")
	builder = x509.CertificateSigningRequestBuilder()
	# CN is limited to 64 characters; long names are carried by the SAN only
	if len(domains[0]) <= 64:
		builder = builder.subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])]))
	else:
		builder = builder.subject_name(x509.Name([]))
	builder = builder.add_extension(
		x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
		critical=False,
	)
	return builder.sign(key, hashes.SHA256())


def csr_to_pem(csr: x509.CertificateSigningRequest) -> str:
	return csr.public_bytes(serialization.Encoding.PEM).decode("ascii")


def csr_to_der(csr: x509.CertificateSigningRequest) -> bytes:
	return csr.public_bytes(serialization.Encoding.DER)


def load_chain(chain_pem: str) -> list[x509.Certificate]:
	"""Certificates of a PEM bundle, leaf first."""
	try:
		return x509.load_pem_x509_certificates(chain_pem.encode("ascii"))
	except ValueError:
		raise ValueError("No certificate found in PEM data") from None


def certificate_to_pem(cert: x509.Certificate) -> str:
	return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


@dataclass(frozen=True)
class CertInfo:
	"""Facts read from an issued leaf certificate."""
	domains: list[str]
	cert_type: str
	issued_at: datetime
	expires_at: datetime
	validity_days: int
	serial: str
	issuer_chain: str


def parse_certificate_info(chain_pem: str) -> CertInfo:
	"""Read SANs, validity and DV/OV/EV classification from the leaf."""
	chain = load_chain(chain_pem)
	leaf = chain[0]

	try:
		san = leaf.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME).value
		domains = [name.lower() for name in san.get_values_for_type(x509.DNSName)]
	except x509.ExtensionNotFound:
		domains = [
			attr.value.lower() for attr in leaf.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
		]

	cert_type = "DV"
	try:
		policies = leaf.extensions.get_extension_for_oid(ExtensionOID.CERTIFICATE_POLICIES).value
		if any(p.policy_identifier == _EV_POLICY_OID for p in policies):
			cert_type = "EV"
	except x509.ExtensionNotFound:
		pass
	if cert_type == "DV" and (
		leaf.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)
		or leaf.subject.get_attributes_for_oid(NameOID.ORGANIZATIONAL_UNIT_NAME)
	):
		cert_type = "OV"

	not_before = leaf.not_valid_before_utc
	not_after = leaf.not_valid_after_utc
	# notAfter is inclusive, so a "90 day" cert spans 90 days minus one second
	validity_days = round((not_after - not_before).total_seconds() / 86400)

	return CertInfo(
		domains=domains,
		cert_type=cert_type,
		issued_at=not_before,
		expires_at=not_after,
		validity_days=validity_days,
		serial=format(leaf.serial_number, "x"),
		issuer_chain="".join(certificate_to_pem(c) for c in chain[1:]),
	)


def leaf_der(chain_pem: str) -> bytes:
	"""DER bytes of the first certificate in a chain."""
	return load_chain(chain_pem)[0].public_bytes(serialization.Encoding.DER)
