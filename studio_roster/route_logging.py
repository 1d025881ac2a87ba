from __future__ import annotations

from fastapi.routing import APIRoute
from starlette.requests import Request

from studio_roster.config import settings
from studio_roster.request_context import current_business, current_endpoint


class EndpointNameRoute(APIRoute):
    """Tags every query issued while serving the route with the endpoint and tenant."""

    def get_route_handler(self):
        handler = super().get_route_handler()
        route_path = self.path

        async def tagged_handler(request: Request):
            endpoint_token = current_endpoint.set(f'{request.method} {route_path}')
            business_token = current_business.set(request.headers.get(settings.business_header) or '-')
            try:
                return await handler(request)
            finally:
                current_business.reset(business_token)
                current_endpoint.reset(endpoint_token)

        return tagged_handler
