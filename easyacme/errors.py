#!/usr/bin/env python3
#
# easyacme/errors.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Error taxonomy shared by the ACME client, DNS adapters and services.

Every error carries an HTTP ``status_code`` and a stable ``code`` so the API
layer can render it without knowing where it was raised.
"""

from __future__ import annotations

from typing import Any

# RFC 8555 problem type prefix
ACME_ERROR_PREFIX = "urn:ietf:params:acme:error:"


class EasyAcmeError(Exception):
	"""Base class for all domain errors."""

	status_code = 500
	code = "internal_error"

	def __init__(self, detail: str = "", **extra: Any) -> None:
		super().__init__(detail)
		self.detail = detail
		self.extra = extra

	def to_dict(self) -> dict[str, Any]:
		payload: dict[str, Any] = {"status": "error", "error": self.code, "detail": self.detail}
		payload.update({k: v for k, v in self.extra.items() if v is not None})
		return payload


# ---------------------------------------------------------------------------
# Caller errors
# ---------------------------------------------------------------------------

class ValidationError(EasyAcmeError):
	"""Bad input; raised before any network call is made."""

	status_code = 400
	code = "validation_error"


class InvalidDomainError(ValidationError):
	code = "invalid_domain"

	def __init__(self, domain: str, reason: str = "not a valid DNS name") -> None:
		super().__init__(f"Invalid domain {domain!r}: {reason}", domain=domain)
		self.domain = domain


class ResourceNotFoundError(EasyAcmeError):
	status_code = 404
	code = "not_found"


class StateConflictError(EasyAcmeError):
	"""Operation not allowed in the resource's current state."""

	status_code = 409
	code = "state_conflict"


# ---------------------------------------------------------------------------
# CA protocol errors
# ---------------------------------------------------------------------------

class AcmeProtocolError(EasyAcmeError):
	"""CA-reported failure. ``detail`` is the CA's problem detail verbatim."""

	status_code = 502
	code = "acme_error"

	def __init__(
		self,
		detail: str,
		*,
		problem_type: str | None = None,
		http_status: int | None = None,
		subproblems: list | None = None,
	) -> None:
		super().__init__(
			detail,
			problem_type=problem_type,
			http_status=http_status,
			subproblems=subproblems or None,
		)
		self.problem_type = problem_type
		self.http_status = http_status
		self.subproblems = subproblems or []

	@property
	def short_type(self) -> str | None:
		"""Problem type without the ``urn:ietf:params:acme:error:`` prefix."""
		if self.problem_type and self.problem_type.startswith(ACME_ERROR_PREFIX):
			return self.problem_type[len(ACME_ERROR_PREFIX):]
		return self.problem_type

	@classmethod
	def from_problem(cls, problem: dict | None, *, http_status: int | None = None, fallback: str = ""):
		"""Build the error from an RFC 7807 problem document."""
		problem = problem or {}
		return cls(
			problem.get("detail") or fallback or "CA returned an error without detail",
			problem_type=problem.get("type"),
			http_status=http_status,
			subproblems=problem.get("subproblems"),
		)


class RegistrationError(AcmeProtocolError):
	code = "registration_failed"


class OrderError(AcmeProtocolError):
	code = "order_failed"


class AuthorizationFailed(AcmeProtocolError):
	code = "authorization_failed"


class FinalizationFailed(AcmeProtocolError):
	code = "finalization_failed"


class RevocationError(AcmeProtocolError):
	code = "revocation_failed"


class DeactivationError(AcmeProtocolError):
	code = "deactivation_failed"


# ---------------------------------------------------------------------------
# DNS vendor errors
# ---------------------------------------------------------------------------

class DNSProviderError(EasyAcmeError):
	"""Vendor API failure. ``vendor_code`` is the vendor's own error code."""

	status_code = 502
	code = "dns_error"
	retryable = False

	def __init__(self, detail: str, *, vendor: str, vendor_code: str | None = None) -> None:
		super().__init__(detail, vendor=vendor, vendor_code=vendor_code)
		self.vendor = vendor
		self.vendor_code = vendor_code

	def __str__(self) -> str:
		suffix = f" [{self.vendor_code}]" if self.vendor_code else ""
		return f"{self.vendor}: {self.detail}{suffix}"


class DNSAuthError(DNSProviderError):
	code = "dns_auth"


class DNSRateLimitError(DNSProviderError):
	code = "dns_rate_limited"
	retryable = True


class DNSNotFoundError(DNSProviderError):
	code = "dns_not_found"


class DNSTransientError(DNSProviderError):
	code = "dns_transient"
	retryable = True


# ---------------------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------------------

class OperationTimeoutError(EasyAcmeError, TimeoutError):
	"""A polling loop or propagation wait ran out of budget."""

	status_code = 504
	code = "timeout"
