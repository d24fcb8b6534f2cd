from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from mobifaktura.common.rate_limit import enforce, read_limiter, write_limiter
from mobifaktura.core.config import settings
from mobifaktura.core.database import SessionLocal
from mobifaktura.core.exceptions import UnauthorizedError
from mobifaktura.core.permissions import Capability, ensure_capability
from mobifaktura.core.security import decode_access_token
from mobifaktura.models.user import User, UserSession
from mobifaktura.utils.dates import ensure_aware, utcnow


def get_db():
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Token may come from the Authorization header or the session cookie
bearer_scheme = HTTPBearer(auto_error=False)


def get_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if credentials is not None:
        return credentials.credentials
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not token:
        raise UnauthorizedError("Not authenticated")
    return token


def get_current_session(
    token: str = Depends(get_token),
    db: Session = Depends(get_db),
) -> UserSession:
    """
    Resolve the token to a live session row.
    Raises 401 if the token is invalid, the session is gone or expired.
    """
    payload = decode_access_token(token)
    if not payload:
        raise UnauthorizedError("Invalid token")

    session_id = payload.get("sid")
    user_id = payload.get("sub")
    if not session_id or not user_id:
        raise UnauthorizedError("Token payload missing subject")

    session = db.query(UserSession).filter(UserSession.id == session_id).first()
    if not session or session.user_id != user_id:
        raise UnauthorizedError("Session not found")

    if ensure_aware(session.expires_at) <= utcnow():
        db.delete(session)
        db.commit()
        raise UnauthorizedError("Session expired")

    return session


def get_current_user(
    session: UserSession = Depends(get_current_session),
) -> User:
    user = session.user
    if not user:
        raise UnauthorizedError("User not found")
    return user


def require(capability: Capability):
    """Dependency factory: the current user must hold ``capability``."""
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        ensure_capability(current_user, capability)
        return current_user

    return dependency


def write_rate_limit(current_user: User = Depends(get_current_user)) -> User:
    enforce(write_limiter, f"write:{current_user.id}")
    return current_user


def read_rate_limit(current_user: User = Depends(get_current_user)) -> User:
    enforce(read_limiter, f"read:{current_user.id}")
    return current_user
