"""
Issue Infrastructure Layer
==========================

Concrete implementations of the application interfaces:
- SQLAlchemy models and repositories
- Escalation policy loading, realtime webhook publisher and sweep timer
"""

from src.issues.infrastructure.models import (
    IssueModel,
    AuditTrailModel,
    NotificationModel,
    EscalationRuleModel,
)
from src.issues.infrastructure.repositories import (
    SQLAlchemyIssueRepository,
    SQLAlchemyAuditRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyEscalationRuleRepository,
)
from src.issues.infrastructure.external import (
    EscalationConfigManager,
    WebhookEventPublisher,
    EscalationScheduler,
    CircuitBreaker,
)

__all__ = [
    "IssueModel",
    "AuditTrailModel",
    "NotificationModel",
    "EscalationRuleModel",
    "SQLAlchemyIssueRepository",
    "SQLAlchemyAuditRepository",
    "SQLAlchemyNotificationRepository",
    "SQLAlchemyEscalationRuleRepository",
    "EscalationConfigManager",
    "WebhookEventPublisher",
    "EscalationScheduler",
    "CircuitBreaker",
]
