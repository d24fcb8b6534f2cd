from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from mobifaktura.core.config import settings
from mobifaktura.core.exceptions import RateLimitError, UnauthorizedError
from mobifaktura.core.security import create_access_token, verify_password
from mobifaktura.logger_config import logger
from mobifaktura.models.user import LoginAttempt, LoginLog, User, UserSession
from mobifaktura.services.user_service import get_user_by_email
from mobifaktura.utils.dates import ensure_aware, utcnow


def _lockout_remaining(attempt: Optional[LoginAttempt]) -> int:
    if not attempt or not attempt.locked_until:
        return 0
    remaining = (ensure_aware(attempt.locked_until) - utcnow()).total_seconds()
    return max(0, int(remaining) + 1) if remaining > 0 else 0


def _record_failure(db: Session, attempt: Optional[LoginAttempt], email: str) -> LoginAttempt:
    if attempt is None:
        attempt = LoginAttempt(identifier=email, attempt_count=0)
        db.add(attempt)
    elif attempt.locked_until and _lockout_remaining(attempt) == 0:
        # previous lockout has run out
        attempt.locked_until = None
        attempt.attempt_count = 0

    attempt.attempt_count = (attempt.attempt_count or 0) + 1
    if attempt.attempt_count >= settings.MAX_LOGIN_ATTEMPTS:
        attempt.locked_until = utcnow() + timedelta(seconds=settings.LOGIN_LOCKOUT_SECONDS)
        attempt.attempt_count = 0
        logger.warning(f"Login locked for {email} for {settings.LOGIN_LOCKOUT_SECONDS}s")
    return attempt


def login(
    db: Session,
    email: str,
    password: str,
    ip_address: str,
    user_agent: Optional[str] = None,
) -> Tuple[str, User, UserSession]:
    """
    Verify credentials and open a session.
    Returns (access_token, user, session).
    """
    email = email.strip().lower()
    attempt = db.query(LoginAttempt).filter(LoginAttempt.identifier == email).first()

    remaining = _lockout_remaining(attempt)
    if remaining:
        raise RateLimitError(
            f"Too many failed login attempts. Try again in {remaining} seconds.",
            retry_after=remaining,
        )

    user = get_user_by_email(db, email)
    if not user or not verify_password(password, user.password_hash):
        _record_failure(db, attempt, email)
        db.add(LoginLog(
            email=email,
            ip_address=ip_address,
            success=False,
            user_id=user.id if user else None,
            user_agent=user_agent,
        ))
        db.commit()
        logger.info(f"Failed login for {email} from {ip_address}")
        raise UnauthorizedError("Incorrect email or password")

    if attempt is not None:
        db.delete(attempt)

    session = UserSession(
        user_id=user.id,
        expires_at=utcnow() + timedelta(days=settings.SESSION_DURATION_DAYS),
    )
    db.add(session)
    db.add(LoginLog(
        email=email,
        ip_address=ip_address,
        success=True,
        user_id=user.id,
        user_agent=user_agent,
    ))
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"Error opening session for {email}")
        raise
    db.refresh(session)

    token = create_access_token(
        data={"sub": user.id, "sid": session.id, "role": user.role.value},
        expires_delta=timedelta(days=settings.SESSION_DURATION_DAYS),
    )
    logger.info(f"User {user.email} logged in successfully")
    return token, user, session


def logout(db: Session, session: UserSession) -> None:
    db.delete(session)
    db.commit()
    logger.info(f"Session {session.id} closed")
