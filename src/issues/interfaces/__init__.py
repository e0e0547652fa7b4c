"""
Issue Interfaces Layer
======================

FastAPI route handlers for issues, notifications and the escalation sweep.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from src.issues.interfaces.controllers import (
    issues_router,
    notifications_router,
    escalation_router,
)

__all__ = ["issues_router", "notifications_router", "escalation_router"]
