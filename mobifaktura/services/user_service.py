from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional, List

from mobifaktura.core.exceptions import ConflictError, NotFoundError, ValidationError
from mobifaktura.core.security import get_password_hash, validate_password_policy, verify_password
from mobifaktura.logger_config import logger
from mobifaktura.models.user import User, UserRole, UserSession


def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
    """Get user by database ID."""
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """Get user by email."""
    return db.query(User).filter(User.email == email.lower()).first()


def get_all_users(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    role: Optional[UserRole] = None,
    search: Optional[str] = None
) -> tuple[List[User], int]:
    """Get all users with optional filtering."""
    query = db.query(User)

    if role:
        query = query.filter(User.role == role)

    if search:
        search_term = f"%{search}%"
        query = query.filter(
            (User.name.ilike(search_term)) |
            (User.email.ilike(search_term))
        )

    total = query.count()
    users = query.order_by(User.name).offset(skip).limit(limit).all()

    return users, total


def create_user(
    db: Session,
    email: str,
    password: str,
    name: str,
    role: UserRole = UserRole.user,
) -> User:
    """Create a new user."""
    if get_user_by_email(db, email):
        raise ConflictError("User with this email already exists")

    try:
        validate_password_policy(password)
    except ValueError as e:
        raise ValidationError(str(e))

    user = User(
        email=email.lower(),
        password_hash=get_password_hash(password),
        name=name.strip(),
        role=role,
    )
    db.add(user)

    try:
        db.commit()
        db.refresh(user)
        logger.info(f"Created {role.value} account {user.email}")
        return user
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Error creating user: {str(e)}")
        raise ConflictError("Failed to create user. Email may already exist.")


def update_user(
    db: Session,
    user_id: str,
    name: Optional[str] = None,
    email: Optional[str] = None,
    role: Optional[UserRole] = None,
    password: Optional[str] = None,
) -> User:
    """Update user information (admin)."""
    user = get_user_by_id(db, user_id)
    if not user:
        raise NotFoundError("User not found")

    if name is not None:
        user.name = name.strip()
    if email is not None:
        existing_user = get_user_by_email(db, email)
        if existing_user and existing_user.id != user_id:
            raise ConflictError("Email is already taken by another user")
        user.email = email.lower()
    if role is not None:
        user.role = role
    if password is not None:
        try:
            validate_password_policy(password)
        except ValueError as e:
            raise ValidationError(str(e))
        user.password_hash = get_password_hash(password)
        # force re-login everywhere
        db.query(UserSession).filter(UserSession.user_id == user_id).delete(synchronize_session=False)

    try:
        db.commit()
        db.refresh(user)
        return user
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Error updating user: {str(e)}")
        raise ConflictError("Failed to update user.")


def change_password(
    db: Session,
    user: User,
    old_password: str,
    new_password: str,
    keep_session_id: Optional[str] = None,
) -> None:
    """Change own password and drop every other session."""
    if not verify_password(old_password, user.password_hash):
        raise ValidationError("Invalid old password")
    if old_password == new_password:
        raise ValidationError("New password must differ from the old one")
    try:
        validate_password_policy(new_password)
    except ValueError as e:
        raise ValidationError(str(e))

    user.password_hash = get_password_hash(new_password)
    sessions = db.query(UserSession).filter(UserSession.user_id == user.id)
    if keep_session_id:
        sessions = sessions.filter(UserSession.id != keep_session_id)
    sessions.delete(synchronize_session=False)

    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error changing password: {str(e)}")
        raise


def delete_user(db: Session, user_id: str) -> None:
    """Delete a user."""
    user = get_user_by_id(db, user_id)
    if not user:
        raise NotFoundError("User not found")

    db.delete(user)
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting user: {str(e)}")
        raise
