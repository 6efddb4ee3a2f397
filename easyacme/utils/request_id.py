#!/usr/bin/env python3
#
# easyacme/utils/request_id.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Request ID middleware for tracing."""

from __future__ import annotations

import logging
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

_log = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
	"""Tag each request with an ID, echoed back in ``X-Request-ID``."""

	async def dispatch(self, request: Request, call_next: Callable) -> Response:
		request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
		request.state.request_id = request_id

		response = await call_next(request)
		response.headers["X-Request-ID"] = request_id
		if response.status_code >= 500:
			_log.warning(
				"REQUEST_FAILED request_id=%s method=%s path=%s status=%d",
				request_id, request.method, request.url.path, response.status_code,
			)
		return response
