"""
API Dependency Injection Module

Provides dependencies for FastAPI routes.
"""

from typing import Annotated

from fastapi import Depends, Request

from claude_relay.services.relay_service import RelayService


def get_relay_service(request: Request) -> RelayService:
    """
    Get the relay service built at application startup

    Args:
        request: Current request

    Returns:
        RelayService: Relay service instance
    """
    return request.app.state.relay_service


# Dependency type aliases
RelayServiceDep = Annotated[RelayService, Depends(get_relay_service)]
