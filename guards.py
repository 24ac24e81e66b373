"""
Authorization guards

A route declares an ordered list of guards. Each guard looks at an explicit
``RequestContext`` and returns either ``Proceed`` carrying the (possibly
enriched) context or ``Rejected`` carrying the outcome. ``run_guards`` stops at
the first rejection, so later guards never run:

    Unauthenticated -> Authenticated -> Authorized
            \\                \\
             +-> Rejected      +-> Rejected

Rejections are values, not exceptions; only the HTTP adapter in ``main``
turns them into error responses.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Optional, Sequence, Union

from errors import Outcome

logger = logging.getLogger(__name__)

UNAUTHORIZED_MESSAGE = "unauthorized access"
EMAIL_MISMATCH_MESSAGE = "Forbidden Access! Email not Match"


@dataclass(frozen=True)
class RequestContext:
    token: Optional[str] = None
    path_email: Optional[str] = None
    body_email: Optional[str] = None
    identity: Optional[str] = None
    user: Optional[dict] = None


@dataclass(frozen=True)
class Proceed:
    context: RequestContext


@dataclass(frozen=True)
class Rejected:
    outcome: Outcome
    message: str


GuardResult = Union[Proceed, Rejected]


class Guard(ABC):
    @abstractmethod
    def check(self, context: RequestContext, services) -> GuardResult:
        ...


class Authenticated(Guard):
    def __repr__(self) -> str:
        return "Authenticated()"

    def check(self, context: RequestContext, services) -> GuardResult:
        claims = services.codec.verify(context.token)
        email = claims.get("email") if claims else None
        if not isinstance(email, str) or not email:
            return Rejected(Outcome.UNAUTHORIZED, UNAUTHORIZED_MESSAGE)
        return Proceed(replace(context, identity=email))


class HasRole(Guard):
    def __init__(self, role: str):
        self.role = role

    def __repr__(self) -> str:
        return f"HasRole({self.role!r})"

    def check(self, context: RequestContext, services) -> GuardResult:
        if context.identity is None:
            return Rejected(Outcome.UNAUTHORIZED, UNAUTHORIZED_MESSAGE)
        user = services.users.find_by_email(context.identity)
        if not user or user.get("role") != self.role:
            return Rejected(Outcome.FORBIDDEN, f"Forbidden Access! {self.role} Only Actions!")
        return Proceed(replace(context, user=user))


class IdentityMatch(Guard):
    """Token email must equal the path email and/or the body email, exactly."""

    def __init__(self, path: bool = True, body: bool = True):
        self.path = path
        self.body = body

    def __repr__(self) -> str:
        return f"IdentityMatch(path={self.path}, body={self.body})"

    def check(self, context: RequestContext, services) -> GuardResult:
        if context.identity is None:
            return Rejected(Outcome.UNAUTHORIZED, UNAUTHORIZED_MESSAGE)
        if self.path and context.path_email != context.identity:
            return Rejected(Outcome.FORBIDDEN, EMAIL_MISMATCH_MESSAGE)
        if self.body and context.body_email != context.identity:
            return Rejected(Outcome.FORBIDDEN, EMAIL_MISMATCH_MESSAGE)
        return Proceed(context)


def run_guards(context: RequestContext, guards: Sequence[Guard], services) -> GuardResult:
    for guard in guards:
        result = guard.check(context, services)
        if isinstance(result, Rejected):
            logger.info("Request rejected by %r: %s", guard, result.outcome.name)
            return result
        context = result.context
    return Proceed(context)
