import secrets
from dataclasses import dataclass
from typing import Optional

from sqlmodel import Session, select

from models import User, UserSession


@dataclass(frozen=True)
class RequestContext:
    """Who is asking. Built once per request and handed to every service call."""
    user_id: Optional[int] = None

    @classmethod
    def anonymous(cls):
        return cls()


def current_user_id(context: Optional[RequestContext]) -> Optional[int]:
    if context is None:
        return None
    return context.user_id


def issue_session(session: Session, user_id: int) -> str:
    token = secrets.token_hex(16)
    session.add(UserSession(token=token, user_id=user_id))
    session.commit()
    return token


def resolve_context(session: Session, token: Optional[str]) -> RequestContext:
    if not token:
        return RequestContext.anonymous()
    found = session.exec(select(UserSession).where(UserSession.token == token)).first()
    if found is None or session.get(User, found.user_id) is None:
        return RequestContext.anonymous()
    return RequestContext(user_id=found.user_id)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(' ')
    if scheme.lower() != 'bearer' or not token:
        return None
    return token.strip()
