"""Translation between HTTP requests/responses and the core's request context."""

from html import escape

from fastapi import Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from sqlalchemy.orm import Session

from guest_payment.config import Settings
from guest_payment.domain.context import (
    Continue,
    ErrorPage,
    Outcome,
    PageKind,
    Redirect,
    RequestContext,
    ResponseDirectives,
    SharedContext,
)
from guest_payment.domain.handoff import CartHandoffStore
from guest_payment.domain.messages import flag_notice
from guest_payment.infrastructure.cart_session import SessionCart
from guest_payment.infrastructure.repository import (
    CatalogRepository,
    KeyValueRepository,
    OrderRepository,
    UserRepository,
)
from guest_payment.infrastructure.session_auth import SignedCookieAuth


def _matches(path: str, prefix: str) -> bool:
    prefix = prefix.rstrip("/")
    return bool(prefix) and (path == prefix or path.startswith(prefix + "/"))


def classify_page(path: str, settings: Settings) -> PageKind:
    """Map a request path onto a page kind; longest prefixes are checked first."""
    candidates = [
        (settings.pay_path, PageKind.ORDER_PAY),
        (settings.received_path, PageKind.ORDER_RECEIVED),
        (settings.checkout_path, PageKind.CHECKOUT),
        (settings.cart_path, PageKind.CART),
        (settings.admin_path, PageKind.ADMIN),
        (settings.ajax_path, PageKind.AJAX),
        (settings.rest_path, PageKind.REST),
        (settings.login_path, PageKind.LOGIN),
    ]
    for prefix, kind in sorted(candidates, key=lambda c: len(c[0]), reverse=True):
        if _matches(path, prefix):
            return kind
    return PageKind.OTHER


def page_order_id(path: str, page: PageKind, settings: Settings) -> int | None:
    """Order id from /order-pay/<id> and /order-received/<id> style paths."""
    prefix = {
        PageKind.ORDER_PAY: settings.pay_path,
        PageKind.ORDER_RECEIVED: settings.received_path,
    }.get(page)
    if prefix is None:
        return None
    remainder = path[len(prefix.rstrip("/")):].strip("/").split("/", 1)[0]
    return int(remainder) if remainder.isdigit() else None


def client_ip(request: Request) -> str:
    """Source address of the request.

    Request headers are never consulted here. Behind a configured trusted
    proxy, the proxy headers middleware has already replaced the peer with
    the right-most untrusted X-Forwarded-For hop.
    """
    return request.client.host if request.client else ""


def build_shared_context(session: Session, settings: Settings) -> SharedContext:
    store = KeyValueRepository(session)
    return SharedContext(
        settings=settings,
        orders=OrderRepository(session),
        users=UserRepository(session),
        catalog=CatalogRepository(session),
        store=store,
        handoffs=CartHandoffStore(store, settings.cart_handoff_ttl_seconds),
    )


def build_request_context(request: Request, shared: SharedContext) -> RequestContext:
    """Read cookies and query once and bind the request-scoped collaborators."""
    settings = shared.settings
    cookies = dict(request.cookies)
    response = ResponseDirectives()
    auth = SignedCookieAuth(cookies, response, settings)
    page = classify_page(request.url.path, settings)

    ctx = RequestContext(
        page=page,
        url=str(request.url),
        auth=auth,
        cart=SessionCart(shared.store, shared.catalog, auth),
        query=dict(request.query_params),
        cookies=cookies,
        client_ip=client_ip(request),
        page_order_id=page_order_id(request.url.path, page, settings),
        response=response,
    )

    flag = flag_notice(ctx.query)
    if flag is not None:
        ctx.add_notice(*flag)
    return ctx


def apply_cookies(response: Response, directives: ResponseDirectives) -> Response:
    for cookie in directives.cookies:
        if cookie.delete:
            response.delete_cookie(cookie.name, path="/")
        else:
            response.set_cookie(
                cookie.name,
                cookie.value,
                max_age=cookie.max_age,
                path="/",
                secure=cookie.secure,
                httponly=cookie.httponly,
                samesite=cookie.samesite,
            )
    return response


def error_page(message: str, status_code: int = 403) -> HTMLResponse:
    body = (
        "<!DOCTYPE html><html><head><title>Payment session error</title></head>"
        f"<body><h1>Payment session error</h1><p>{escape(message)}</p></body></html>"
    )
    return HTMLResponse(body, status_code=status_code)


def outcome_response(outcome: Outcome, directives: ResponseDirectives) -> Response | None:
    """Response for a terminal outcome; None means the request continues."""
    if isinstance(outcome, Continue):
        return None
    if isinstance(outcome, Redirect):
        response: Response = RedirectResponse(outcome.url, status_code=outcome.status_code)
    elif isinstance(outcome, ErrorPage):
        response = error_page(outcome.message, outcome.status_code)
    else:
        raise TypeError(f"Unknown outcome: {outcome!r}")
    return apply_cookies(response, directives)
