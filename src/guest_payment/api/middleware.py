"""Request middleware running the guest payment request-start stage."""

import structlog
from fastapi import Request
from fastapi.responses import RedirectResponse, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from guest_payment.api.adapter import (
    apply_cookies,
    build_request_context,
    build_shared_context,
    outcome_response,
)
from guest_payment.domain.context import ResponseDirectives, add_query_arg
from guest_payment.domain.messages import ERROR_PARAM, INVALID_TOKEN, TOKEN_PARAM
from guest_payment.infrastructure.database import get_session_factory
from guest_payment.pipeline import GuestPaymentPipeline

logger = structlog.get_logger(__name__)


class GuestPaymentMiddleware(BaseHTTPMiddleware):
    """Runs ``on_request_start`` for every request in its own unit of work."""

    def _run_pipeline(self, request: Request) -> tuple[Response | None, ResponseDirectives]:
        app_state = request.app.state
        settings = app_state.settings

        if app_state.codec is None:
            # Guest payment is disabled when the codec is unusable; links fail closed
            if request.query_params.get(TOKEN_PARAM):
                logger.error("token_rejected_codec_unavailable")
                url = add_query_arg(settings.url("/"), **{ERROR_PARAM: INVALID_TOKEN})
                return RedirectResponse(url, status_code=302), ResponseDirectives()
            return None, ResponseDirectives()

        factory = app_state.session_factory or get_session_factory()
        session = factory()
        try:
            shared = build_shared_context(session, settings)
            ctx = build_request_context(request, shared)
            pipeline = GuestPaymentPipeline.build(shared, app_state.codec)
            outcome = pipeline.on_request_start(ctx)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        return outcome_response(outcome, ctx.response), ctx.response

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response, directives = await run_in_threadpool(self._run_pipeline, request)
        if response is not None:
            return response

        response = await call_next(request)
        return apply_cookies(response, directives)
