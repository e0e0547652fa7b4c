"""
Grievance Escalation Engine - Main Application
==============================================

Issue lifecycle and time-based priority/SLA escalation service for the
HR-grievance ticketing application.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects, state machine
- Infrastructure: Database, YAML policy, realtime webhook, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.infrastructure.database import (
    init_database, close_database, create_tables, get_session_maker
)
from src.issues.application import (
    IssueLifecycleService, EscalationService, SLAReportingService,
    NotificationInboxService, NotificationDispatcher, AuditRecorder,
    TransitionRunner, IEscalationPolicyProvider, IEventPublisher
)
from src.issues.domain import Clock, SystemClock
from src.issues.infrastructure import (
    SQLAlchemyIssueRepository, SQLAlchemyAuditRepository,
    SQLAlchemyNotificationRepository, SQLAlchemyEscalationRuleRepository,
    EscalationConfigManager, WebhookEventPublisher, EscalationScheduler
)
from src.issues.interfaces import issues_router, notifications_router, escalation_router
from src.shared.api.middleware import (
    CorrelationIDMiddleware, TimingMiddleware, LoggingMiddleware,
    register_exception_handlers
)
from src.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


def build_services(
    app: FastAPI,
    session_maker: async_sessionmaker[AsyncSession],
    policy_provider: IEscalationPolicyProvider,
    event_publisher: IEventPublisher,
    clock: Optional[Clock] = None
) -> EscalationService:
    """Wire repositories and services onto app.state."""
    clock = clock or SystemClock()

    issue_repo = SQLAlchemyIssueRepository(session_maker)
    audit_repo = SQLAlchemyAuditRepository(session_maker)
    notification_repo = SQLAlchemyNotificationRepository(session_maker)
    rule_repo = SQLAlchemyEscalationRuleRepository(
        session_maker, refresh_seconds=settings.escalation_rule_cache_seconds
    )

    audit_recorder = AuditRecorder(audit_repo)
    runner = TransitionRunner(
        issue_repo,
        notification_repo,
        audit_recorder,
        NotificationDispatcher(policy_provider),
        event_publisher,
    )
    escalation_service = EscalationService(
        issue_repo, rule_repo, runner, policy_provider, clock,
        workers=settings.escalation_sweep_workers
    )

    app.state.settings = settings
    app.state.policy_provider = policy_provider
    app.state.rule_repository = rule_repo
    app.state.lifecycle_service = IssueLifecycleService(
        issue_repo, runner, audit_recorder, audit_repo, policy_provider, clock
    )
    app.state.escalation_service = escalation_service
    app.state.sla_reporting_service = SLAReportingService(issue_repo, policy_provider, clock)
    app.state.inbox_service = NotificationInboxService(notification_repo)
    return escalation_service


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP: logging, database, escalation policy (+ watcher), services,
    sweep scheduler (first run delayed).
    SHUTDOWN: stop scheduler (in-flight issues finish), watcher, webhook
    client, database.
    """
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting escalation engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()
    try:
        await create_tables()
    except Exception as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    config_manager = EscalationConfigManager(settings.business_timezone)
    config_manager.load(settings.escalation_config_path)
    config_manager.start_watching()

    publisher = WebhookEventPublisher()
    escalation_service = build_services(app, get_session_maker(), config_manager, publisher)

    scheduler = EscalationScheduler(escalation_service)
    if settings.escalation_sweep_enabled:
        await scheduler.start()
    app.state.scheduler = scheduler

    logger.info("Escalation engine started")

    yield

    logger.info("Shutting down escalation engine")
    await scheduler.stop()
    config_manager.stop_watching()
    await publisher.close()
    await close_database()
    logger.info("Escalation engine shutdown complete")


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="Grievance Escalation Engine API",
        description="""
        ## Issue lifecycle & time-based priority/SLA escalation

        - Working-time priority recomputation (09:00-17:00, Mon-Sat, holidays excluded)
        - Hard override: critical after 16 working hours unresolved
        - SLA buckets per priority: onTime, atRisk, breached, pending
        - Manual actions: assign, map/unmap 'others', reopen within window, escalate
        - Periodic idempotent escalation sweep with an on-demand trigger
        """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan if use_lifespan else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(TimingMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    register_exception_handlers(app)

    app.include_router(issues_router)
    app.include_router(notifications_router)
    app.include_router(escalation_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Health check for load balancers and orchestrators."""
        scheduler = getattr(request.app.state, "scheduler", None)
        service = getattr(request.app.state, "escalation_service", None)
        last = service.last_sweep if service else None
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": {
                "escalation_config": "loaded" if hasattr(request.app.state, "policy_provider") else "not_loaded",
                "escalation_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
                "last_sweep_at": last.last_run_at.isoformat() if last else None,
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
