# exam_engine/core/security.py
"""
Identity is owned by the platform's auth service. This module only decodes
its bearer tokens into an ``Actor`` and exposes role-gated dependencies.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from exam_engine.core.config import settings

ROLE_STUDENT = "student"
ROLE_TEACHER = "teacher"

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str
    class_id: Optional[str] = None

    @property
    def is_elevated(self) -> bool:
        return self.role in settings.ELEVATED_ROLES


def create_access_token(
    *,
    user_id: str,
    role: str,
    class_id: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {"sub": str(user_id), "role": role, "exp": expire}
    if class_id is not None:
        to_encode["class_id"] = str(class_id)
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Actor:
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or not role:
        raise JWTError("token is missing subject or role")
    return Actor(user_id=str(user_id), role=role, class_id=payload.get("class_id"))


def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_access_token(credentials.credentials)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_current_teacher(actor: Actor = Depends(get_current_actor)) -> Actor:
    # deans/admins act with teacher rights on exams they do not own
    if actor.role != ROLE_TEACHER and not actor.is_elevated:
        raise HTTPException(status_code=403, detail="Teacher role required")
    return actor


def get_current_student(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role != ROLE_STUDENT:
        raise HTTPException(status_code=403, detail="Student role required")
    return actor
