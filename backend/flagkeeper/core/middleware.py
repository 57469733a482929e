"""
Middleware Module

Request middleware for the flag service:
- Correlation ID propagation into log records
"""

import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from flagkeeper.core.logging import correlation_id


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Middleware to handle correlation ID for request tracing."""

    def __init__(self, app: ASGIApp, header_name: str = "X-Correlation-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Extract or generate correlation ID and attach to context."""
        correlation_id_value = request.headers.get(self.header_name) or str(uuid.uuid4())

        token = correlation_id.set(correlation_id_value)
        request.state.correlation_id = correlation_id_value
        try:
            response = await call_next(request)
        finally:
            correlation_id.reset(token)

        response.headers[self.header_name] = correlation_id_value
        return response
