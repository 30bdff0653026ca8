from typing import Callable, Generator, List, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from procureflow.core.config import get_settings
from procureflow.core.exceptions import UnauthorizedError
from procureflow.core.roles import Capability, has_capability
from procureflow.db.session import SessionLocal
from procureflow.db.models import User

# Tokens are issued by the external auth provider; this service only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


def get_db() -> Generator:
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def decode_token(token: str) -> Optional[UUID]:
    """Decode and validate a bearer token. Returns the user id if valid."""
    settings = get_settings()
    options = {"verify_aud": settings.jwt_audience is not None}
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
        subject = payload.get("sub")
        return UUID(subject) if subject else None
    except (JWTError, ValueError):
        return None


def get_current_user(
    db: Session = Depends(get_db),
    token: str = Depends(oauth2_scheme),
) -> User:
    """Get current authenticated user from the bearer token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        raise credentials_exception

    user_id = decode_token(token)
    if user_id is None:
        raise credentials_exception

    user = db.query(User).filter(User.id == user_id).first()
    if user is None or not user.is_active:
        raise credentials_exception
    return user


def require_capability(capability: Capability) -> Callable:
    """Dependency factory that rejects users whose role lacks ``capability``."""

    def checker(current_user: User = Depends(get_current_user)) -> User:
        if not has_capability(current_user.role, capability):
            raise UnauthorizedError(f"Role {current_user.role} lacks {capability.value}")
        return current_user

    return checker


def get_commit_hook() -> Callable[[List[UUID]], None]:
    """Hook that hands committed outbox messages to the worker."""
    from procureflow.workers.tasks import enqueue_side_effects

    return enqueue_side_effects
