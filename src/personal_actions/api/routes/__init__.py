"""API routes."""

from personal_actions.api.routes.health import router as health_router
from personal_actions.api.routes.personal_actions import router as personal_actions_router

__all__ = ["health_router", "personal_actions_router"]
