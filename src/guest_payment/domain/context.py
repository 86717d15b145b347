"""Request-scoped state and shared dependencies for the guest payment core.

Cookies are read once into a ``RequestContext`` when a request starts.
Every cookie write is collected in ``ResponseDirectives`` and applied to
the outgoing response in one place by the host adapter.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from guest_payment.config import Settings
from guest_payment.domain.handoff import CartHandoffStore
from guest_payment.domain.interfaces import (
    ICartSession,
    ICatalog,
    IKeyValueStore,
    IOrderStore,
    ISessionAuth,
    IUserStore,
)


class PageKind(str, Enum):
    CART = "cart"
    CHECKOUT = "checkout"
    ORDER_PAY = "order_pay"
    ORDER_RECEIVED = "order_received"
    ADMIN = "admin"
    AJAX = "ajax"
    REST = "rest"
    LOGIN = "login"
    OTHER = "other"


@dataclass(frozen=True)
class CookieDirective:
    name: str
    value: str = ""
    max_age: Optional[int] = None
    secure: bool = True
    httponly: bool = True
    samesite: str = "lax"
    delete: bool = False


@dataclass
class ResponseDirectives:
    """Cookie writes accumulated while handling one request."""

    cookies: list[CookieDirective] = field(default_factory=list)

    def set_cookie(
        self,
        name: str,
        value: str,
        max_age: Optional[int],
        secure: bool = True,
        httponly: bool = True,
        samesite: str = "lax",
    ) -> None:
        self.cookies.append(
            CookieDirective(
                name=name,
                value=value,
                max_age=max_age,
                secure=secure,
                httponly=httponly,
                samesite=samesite,
            )
        )

    def delete_cookie(self, name: str) -> None:
        self.cookies.append(CookieDirective(name=name, delete=True))

    def final(self, name: str) -> Optional[CookieDirective]:
        """Return the last directive written for a cookie."""
        for directive in reversed(self.cookies):
            if directive.name == name:
                return directive
        return None


@dataclass(frozen=True)
class Notice:
    message: str
    level: str = "error"


@dataclass
class RequestContext:
    """Everything the core needs to know about the current request."""

    page: PageKind
    url: str
    auth: ISessionAuth
    cart: ICartSession
    query: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    client_ip: str = ""
    page_order_id: Optional[int] = None
    response: ResponseDirectives = field(default_factory=ResponseDirectives)
    notices: list[Notice] = field(default_factory=list)

    def add_notice(self, message: str, level: str = "error") -> None:
        self.notices.append(Notice(message=message, level=level))

    def current_user_id(self) -> Optional[int]:
        return self.auth.get_current_user_id()

    def has_cookie(self, name: str) -> bool:
        return bool(self.cookies.get(name))


@dataclass(frozen=True)
class Continue:
    """Let the host handle the request normally."""


@dataclass(frozen=True)
class Redirect:
    url: str
    status_code: int = 302


@dataclass(frozen=True)
class ErrorPage:
    message: str
    status_code: int = 403


Outcome = Union[Continue, Redirect, ErrorPage]

CONTINUE = Continue()


@dataclass
class SharedContext:
    """Dependencies shared by every core component."""

    settings: Settings
    orders: IOrderStore
    users: IUserStore
    catalog: ICatalog
    store: IKeyValueStore
    handoffs: CartHandoffStore


def add_query_arg(url: str, **params: str) -> str:
    """Return ``url`` with the given query parameters set."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    query.extend((k, str(v)) for k, v in params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def remove_query_arg(url: str, name: str) -> str:
    """Return ``url`` without the query parameter ``name``."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != name]
    return urlunsplit(parts._replace(query=urlencode(query)))
