"""
Supabase Auth 기반 인증 의존성

Bearer 토큰을 Supabase 에 검증한 뒤 user_profiles.roles 로 역할을 결정합니다.
"""
import logging
import uuid
from dataclasses import dataclass, field
from functools import lru_cache

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.orm import Session
from supabase import Client, create_client

from openaero.db import get_session
from openaero.exceptions import ForbiddenError, UnauthorizedError
from openaero.models import CreatorProfile, UserProfile
from openaero.settings import settings

logger = logging.getLogger(__name__)

ADMIN_ROLES = frozenset({"ADMIN", "SUPER_ADMIN"})
REVIEWER_ROLES = ADMIN_ROLES | {"REVIEWER"}


@dataclass
class AuthUser:
    id: uuid.UUID
    email: str | None = None
    roles: list[str] = field(default_factory=lambda: ["USER"])
    creator_profile_id: uuid.UUID | None = None

    def has_role(self, *roles: str) -> bool:
        return any(r in self.roles for r in roles)

    @property
    def is_admin(self) -> bool:
        return self.has_role(*ADMIN_ROLES)

    @property
    def is_reviewer(self) -> bool:
        return self.has_role(*REVIEWER_ROLES)


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise UnauthorizedError("인증 서버가 설정되지 않았습니다.", error_code="AUTH_NOT_CONFIGURED")
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


def _extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def load_auth_user(session: Session, user_id: uuid.UUID, email: str | None = None) -> AuthUser:
    """DB 프로필에서 역할과 크리에이터 프로필을 읽어 AuthUser 를 구성"""
    profile = session.scalars(select(UserProfile).where(UserProfile.user_id == user_id)).first()
    creator = session.scalars(select(CreatorProfile).where(CreatorProfile.user_id == user_id)).first()

    roles = list(profile.roles) if profile and profile.roles else ["USER"]
    return AuthUser(
        id=user_id,
        email=email or (profile.email if profile else None),
        roles=roles,
        creator_profile_id=creator.id if creator else None,
    )


def get_optional_user(
    authorization: str | None = Header(default=None),
    session: Session = Depends(get_session),
) -> AuthUser | None:
    token = _extract_bearer(authorization)
    if token is None:
        return None

    try:
        response = get_supabase_client().auth.get_user(token)
    except UnauthorizedError:
        raise
    except Exception as e:
        logger.warning(f"Supabase 토큰 검증 실패: {e}")
        return None

    user = getattr(response, "user", None)
    if user is None:
        return None

    try:
        user_id = uuid.UUID(str(user.id))
    except ValueError:
        logger.warning(f"잘못된 사용자 ID 형식: {user.id}")
        return None

    return load_auth_user(session, user_id, getattr(user, "email", None))


def get_current_user(user: AuthUser | None = Depends(get_optional_user)) -> AuthUser:
    if user is None:
        raise UnauthorizedError("未授权访问")
    return user


def require_admin(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if not user.is_admin:
        raise ForbiddenError("权限不足")
    return user
