from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from shared.core import get_logger
from storefront.domain.errors import Forbidden, RateLimited, Unauthenticated
from storefront.domain.models import ADMIN_ROLES, User
from storefront.infrastructure.rate_limit import RateLimiter
from storefront.infrastructure.security import create_access_token, decode_access_token, verify_password

logger = get_logger(__name__)


@dataclass(frozen=True)
class AdminContext:
    """Authenticated admin plus request details for the activity log."""
    user: User
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        ).scalar_one_or_none()


def is_local_path(target: Optional[str]) -> bool:
    """Same-site path only: `//host` and `/\\host` are treated as other origins by browsers."""
    if not target or not target.startswith("/"):
        return False
    return not target.startswith(("//", "/\\"))


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    role: str
    redirect_to: str


class AuthService:
    def __init__(self, db: Session, limiter: Optional[RateLimiter] = None):
        self.db = db
        self.limiter = limiter

    def login(self, email: str, password: str, identifier: str, redirect_to: str = "/") -> LoginResult:
        if self.limiter is not None:
            check = self.limiter.check(identifier)
            if not check.allowed:
                logger.warning("Login rate limit exceeded",
                               extra={'extra_fields': {'identifier': identifier}})
                raise RateLimited(retry_after=check.retry_after(self.limiter.clock()))

        user = UserService(self.db).get_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("Failed login attempt", extra={'extra_fields': {'identifier': identifier}})
            raise Unauthenticated("Invalid login credentials")

        if user.role in ADMIN_ROLES:
            destination = "/admin"
        elif not is_local_path(redirect_to) or redirect_to.startswith("/admin"):
            destination = "/"
        else:
            destination = redirect_to
        return LoginResult(create_access_token(user.id, user.role), user.role, destination)

    def authenticate(self, token: Optional[str]) -> User:
        if not token:
            raise Unauthenticated()
        claims = decode_access_token(token)
        if not claims or not claims.get("sub"):
            raise Unauthenticated()
        user = self.db.get(User, claims["sub"])
        if user is None:
            raise Unauthenticated()
        return user

    @staticmethod
    def require_admin(user: User) -> User:
        if user.role not in ADMIN_ROLES:
            raise Forbidden()
        return user
