#!/usr/bin/env python3
#
# easyacme/api/response.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Common API response helpers."""

from __future__ import annotations

from typing import Any

from fastapi import Response


def ok_response(
	*,
	message: str | None = None,
	data: Any = None,
	**extra: Any,
) -> dict[str, Any]:
	"""Build a normalized success response."""
	payload: dict[str, Any] = {"status": "ok"}
	if message is not None:
		payload["message"] = message
	if data is not None:
		payload["data"] = data
	if extra:
		payload.update(extra)
	return payload


def page_response(items: list[Any], *, total: int, page: int, page_size: int) -> dict[str, Any]:
	"""Success envelope for a paginated listing."""
	return ok_response(data={"items": items, "total": total, "page": page, "page_size": page_size})


def pem_download(filename: str, pem: str, media_type: str = "application/x-pem-file") -> Response:
	return Response(
		content=pem,
		media_type=media_type,
		headers={"Content-Disposition": f'attachment; filename="{filename}"'},
	)
