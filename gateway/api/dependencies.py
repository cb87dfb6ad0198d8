"""FastAPI dependencies resolving services from ``app.state``."""

from __future__ import annotations

from fastapi import Request

from gateway.api.orchestrator import GatewayOrchestrator
from gateway.core.container import Container


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_orchestrator(request: Request) -> GatewayOrchestrator:
    return request.app.state.orchestrator
