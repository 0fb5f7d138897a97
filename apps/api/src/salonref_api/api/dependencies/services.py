"""Request-scoped access to the clients built in the application lifespan."""

from __future__ import annotations

from fastapi import Request

from salonref_api.services.clients import ServiceClients


def get_clients(request: Request) -> ServiceClients:
    return request.app.state.clients
