# Dependency injection utilities
from fastapi import Request

from fundperiods.services.background import BackgroundSync
from fundperiods.services.store import FundStore


def get_store(request: Request) -> FundStore:
    """Store created in the application lifespan."""
    return request.app.state.store


def get_background_sync(request: Request) -> BackgroundSync:
    """Background sync runner created in the application lifespan."""
    return request.app.state.background_sync
