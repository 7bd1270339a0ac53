"""
FastAPI application for the Carvizio notification service.

This application provides:
1. Notification preferences for the signed-in service provider
2. The browser inbox polled by the background delivery watchdog
3. An admin endpoint forcing an immediate digest flush

Run with:
    uvicorn api.main:app --reload

Then visit http://localhost:8000/docs for interactive API documentation.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from pydantic import BaseModel

from dispatch.notification_service import NotificationService, build_notification_service
from shared.auth import Identity, IdentityVerifier, StaticTokenVerifier
from shared.config import Settings, configure_logging, get_settings
from shared.exceptions import PersistenceError
from shared.models import BrowserNotification, NotificationPreferences, NotificationPreferencesUpdate

logger = logging.getLogger("api")


# Request/response models
class PendingNotifications(BaseModel):
    notifications: list[BrowserNotification]


class AckRequest(BaseModel):
    keys: list[str]


class AckResponse(BaseModel):
    acknowledged: int


# =============================================================================
# Dependencies
# =============================================================================

def get_service(request: Request) -> NotificationService:
    return request.app.state.service


def get_identity(request: Request, authorization: Optional[str] = Header(default=None)) -> Identity:
    """Resolve the bearer token to an identity, or answer 401."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    verifier: IdentityVerifier = request.app.state.verifier
    identity = verifier.verify(authorization[7:].strip())
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return identity


def require_role(identity: Identity, role: str) -> Identity:
    if identity.role != role:
        raise HTTPException(status_code=403, detail=f"Requires the '{role}' role")
    return identity


# =============================================================================
# Application factory
# =============================================================================

def create_app(
    service: Optional[NotificationService] = None,
    verifier: Optional[IdentityVerifier] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the API around a notification service.

    The lifespan starts the service (event subscriptions and the digest
    timer) and closes its channels on shutdown.
    """
    settings = settings or get_settings()
    service = service or build_notification_service(settings)
    verifier = verifier or StaticTokenVerifier(settings.api_tokens)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Carvizio notification API")
        app.state.service.start()
        yield
        logger.info("Shutting down")
        await app.state.service.aclose()

    app = FastAPI(
        title="Carvizio Notifications",
        description="""
    Notification dispatch for the Carvizio marketplace.

    ## Endpoints

    - `/api/service/notification-preferences` - Read and update preferences
    - `/api/{role}/notifications/*` - Browser inbox polled by the watchdog
    - `/api/admin/notifications/flush` - Force an immediate digest flush
    """,
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.verifier = verifier

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get("/health", tags=["Health"])
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "carvizio-notifications"}

    # =========================================================================
    # Preferences
    # =========================================================================

    @app.get(
        "/api/service/notification-preferences",
        response_model=NotificationPreferences,
        tags=["Preferences"],
    )
    async def get_preferences(
        identity: Identity = Depends(get_identity),
        service: NotificationService = Depends(get_service),
    ):
        """The caller's preferences, with disabled channels shown as all-off."""
        require_role(identity, "service")
        return await service.preference_store.get(identity.user_id)

    @app.put(
        "/api/service/notification-preferences",
        response_model=NotificationPreferences,
        tags=["Preferences"],
    )
    async def update_preferences(
        update: NotificationPreferencesUpdate,
        identity: Identity = Depends(get_identity),
        service: NotificationService = Depends(get_service),
    ):
        """Apply a partial update; fields left out are unchanged."""
        require_role(identity, "service")
        try:
            return await service.preference_store.update(identity.user_id, update)
        except PersistenceError as e:
            logger.error(f"Preference update failed for {identity.user_id}: {e}")
            raise HTTPException(status_code=503, detail="Preferences could not be saved, please retry")

    # =========================================================================
    # Browser inbox
    # =========================================================================

    @app.get(
        "/api/{role}/notifications/pending",
        response_model=PendingNotifications,
        tags=["Browser Delivery"],
    )
    def pending_notifications(
        role: Literal["service", "client"],
        identity: Identity = Depends(get_identity),
        service: NotificationService = Depends(get_service),
    ):
        """Unacknowledged browser notifications for the caller."""
        require_role(identity, role)
        inbox = service.channels.browser.inbox
        return PendingNotifications(notifications=inbox.get_pending(identity.user_id, role=role))

    @app.post(
        "/api/{role}/notifications/ack",
        response_model=AckResponse,
        tags=["Browser Delivery"],
    )
    def acknowledge_notifications(
        role: Literal["service", "client"],
        ack: AckRequest,
        identity: Identity = Depends(get_identity),
        service: NotificationService = Depends(get_service),
    ):
        """Mark notifications as shown so they are not returned again."""
        require_role(identity, role)
        inbox = service.channels.browser.inbox
        return AckResponse(acknowledged=inbox.acknowledge(identity.user_id, ack.keys, role=role))

    # =========================================================================
    # Administration
    # =========================================================================

    @app.post("/api/admin/notifications/flush", tags=["Admin"])
    async def force_flush(
        identity: Identity = Depends(get_identity),
        service: NotificationService = Depends(get_service),
    ) -> dict[str, Any]:
        """Flush every pending digest now instead of waiting for the timer."""
        require_role(identity, "admin")
        summary = await service.force_flush()
        logger.info(f"Forced digest flush by admin {identity.user_id}: {summary.to_dict()}")
        return summary.to_dict()

    return app


configure_logging()
app = create_app()
