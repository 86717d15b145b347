"""FastAPI dependencies for database sessions, request context and core services."""

from typing import Annotated, Generator

import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from guest_payment.api.adapter import build_request_context, build_shared_context
from guest_payment.config import Settings
from guest_payment.domain.admin_actions import AdminActions
from guest_payment.domain.context import RequestContext, SharedContext
from guest_payment.domain.delegation import OperatorDelegationController
from guest_payment.domain.encryption import TokenCodec
from guest_payment.domain.exceptions import ConfigurationError
from guest_payment.domain.services import TokenLifecycleManager
from guest_payment.infrastructure.database import get_session_factory
from guest_payment.infrastructure.notifier import OutboxPaymentNotifier

logger = structlog.get_logger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


AppSettings = Annotated[Settings, Depends(get_settings)]


def get_db(request: Request) -> Generator[Session, None, None]:
    """Provide a database session committed at the end of the request.

    Yields:
        SQLAlchemy session that is automatically committed/rolled back
    """
    factory = request.app.state.session_factory or get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


DBSession = Annotated[Session, Depends(get_db)]


def get_codec(request: Request) -> TokenCodec:
    """Return the configured token codec.

    Raises:
        HTTPException: 500 if the encryption key or method is not configured
    """
    codec = request.app.state.codec
    if codec is None:
        logger.error("token_codec_unavailable")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Guest payment encryption is not configured",
        )
    return codec


Codec = Annotated[TokenCodec, Depends(get_codec)]


def get_shared_context(db: DBSession, settings: AppSettings) -> SharedContext:
    return build_shared_context(db, settings)


Shared = Annotated[SharedContext, Depends(get_shared_context)]


def get_request_context(request: Request, shared: Shared) -> RequestContext:
    try:
        return build_request_context(request, shared)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)) from e


Context = Annotated[RequestContext, Depends(get_request_context)]


def get_lifecycle(shared: Shared, codec: Codec) -> TokenLifecycleManager:
    return TokenLifecycleManager(codec, shared.orders, shared.handoffs, shared.settings)


Lifecycle = Annotated[TokenLifecycleManager, Depends(get_lifecycle)]


def get_admin_actions(shared: Shared, lifecycle: Lifecycle, db: DBSession) -> AdminActions:
    return AdminActions(shared, lifecycle, OutboxPaymentNotifier(db))


Actions = Annotated[AdminActions, Depends(get_admin_actions)]


def get_delegation(shared: Shared) -> OperatorDelegationController:
    return OperatorDelegationController(shared)


Delegation = Annotated[OperatorDelegationController, Depends(get_delegation)]


def get_operator_id(ctx: Context) -> int:
    """Return the authenticated user id.

    Raises:
        HTTPException: 401 if no user is authenticated
    """
    user_id = ctx.current_user_id()
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user_id


OperatorId = Annotated[int, Depends(get_operator_id)]


def build_codec(settings: Settings) -> TokenCodec | None:
    """Build the codec at startup; None disables guest payment (fail closed)."""
    try:
        return TokenCodec.from_settings(settings)
    except ConfigurationError as e:
        logger.error("token_codec_not_configured", error=str(e))
        return None
