from __future__ import annotations

import uuid

from fastapi.routing import APIRoute
from starlette.requests import Request

from walletlink.request_context import current_endpoint, current_request_id


class EndpointNameRoute(APIRoute):
    """Labels every statement logged during a request with its route and a request id."""

    def get_route_handler(self):
        original_handler = super().get_route_handler()

        async def custom_handler(request: Request):
            endpoint_label = f"{request.method} {self.path}"
            request_id = request.headers.get('x-request-id') or uuid.uuid4().hex[:12]
            endpoint_token = current_endpoint.set(endpoint_label)
            request_token = current_request_id.set(request_id)
            try:
                response = await original_handler(request)
            finally:
                current_request_id.reset(request_token)
                current_endpoint.reset(endpoint_token)
            response.headers['x-request-id'] = request_id
            return response

        return custom_handler
