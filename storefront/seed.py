"""Create (or promote) a back-office admin account.

    python -m storefront.seed admin@example.com 's3cret' --role SUPER_ADMIN
"""
import argparse

from sqlalchemy.orm import Session

from storefront.application.auth import UserService
from storefront.domain.models import ADMIN_ROLES, User, UserRole
from storefront.infrastructure.db import SessionLocal, init_models
from storefront.infrastructure.security import hash_password


def upsert_admin(db: Session, email: str, password: str, role: str = UserRole.ADMIN.value,
                 full_name: str = None) -> User:
    if role not in ADMIN_ROLES:
        raise ValueError(f"role must be one of {', '.join(ADMIN_ROLES)}")
    user = UserService(db).get_by_email(email)
    if user is None:
        user = User(email=email.strip().lower(), full_name=full_name)
        db.add(user)
    user.password_hash = hash_password(password)
    user.role = role
    if full_name:
        user.full_name = full_name
    db.commit()
    db.refresh(user)
    return user


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--role", default=UserRole.ADMIN.value, choices=ADMIN_ROLES)
    parser.add_argument("--name", default=None)
    args = parser.parse_args(argv)

    init_models()
    db = SessionLocal()
    try:
        user = upsert_admin(db, args.email, args.password, args.role, args.name)
        print(f"{user.role} account ready for {user.email}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
