from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from mobifaktura.common.rate_limit import auth_limiter, client_ip, limit_by_ip
from mobifaktura.core.config import settings
from mobifaktura.core.dependencies import get_current_session, get_current_user, get_db
from mobifaktura.core.exceptions import AppError, InternalError
from mobifaktura.logger_config import logger
from mobifaktura.models.notification import NotificationType
from mobifaktura.models.user import User, UserSession
from mobifaktura.schemas.auth import LoginRequest, LoginResponse, Logout, PasswordChange
from mobifaktura.schemas.user import UserResponse
from mobifaktura.services import auth_service
from mobifaktura.services.notification_service import create_notification
from mobifaktura.services.user_service import change_password

router = APIRouter()


@router.post("/login", response_model=LoginResponse, dependencies=[Depends(limit_by_ip(auth_limiter, "auth"))])
def login(
    login_data: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Authenticate and open a session. The token is returned and also set as a cookie.
    """
    try:
        token, user, session = auth_service.login(
            db,
            email=login_data.email,
            password=login_data.password,
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error during login: {str(e)}")
        raise InternalError("An error occurred during login")

    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        domain=settings.COOKIE_DOMAIN,
        max_age=settings.SESSION_DURATION_DAYS * 24 * 60 * 60,
    )
    return LoginResponse(
        access_token=token,
        expires_at=session.expires_at.isoformat(),
        user=UserResponse.model_validate(user),
    )


@router.post("/logout", response_model=Logout)
def logout(
    response: Response,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    """
    Close the current session.
    """
    auth_service.logout(db, session)
    response.delete_cookie(settings.SESSION_COOKIE_NAME, domain=settings.COOKIE_DOMAIN)
    return Logout(message="Logged out Successfully")


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)


@router.post(
    "/change-password",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(limit_by_ip(auth_limiter, "auth"))],
)
def change_password_route(
    password_data: PasswordChange,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    """
    Change own password. Every other session is logged out.
    """
    user = session.user
    change_password(
        db,
        user=user,
        old_password=password_data.old_password,
        new_password=password_data.new_password,
        keep_session_id=session.id,
    )
    logger.info(f"Password changed for user {user.id}")
    create_notification(
        db,
        user.id,
        NotificationType.password_changed,
        "Password changed",
        "Your password was changed. Other sessions were logged out.",
    )
    return None
