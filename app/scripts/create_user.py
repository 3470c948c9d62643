"""
Create a user (e.g. first admin). Run from project root:
  python -m app.scripts.create_user USERNAME PASSWORD [--role ROLE ...]
Example:
  python -m app.scripts.create_user admin your-secure-password --role admin --role hr
"""
import argparse
import sys

from sqlalchemy.exc import SQLAlchemyError

from app.core.database import SessionLocal
from app.core.roles import Role
from app.core.security import (
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    hash_password,
)
from app.models import User, UserRole


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a Workforce API user.")
    parser.add_argument("username", help=f"Username (1-{USERNAME_MAX_LEN} chars)")
    parser.add_argument("password", help=f"Password ({PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} chars)")
    parser.add_argument(
        "--role",
        dest="roles",
        action="append",
        choices=[r.value for r in Role],
        help="Role to grant; repeat for several (default: user)",
    )
    args = parser.parse_args(argv)

    username = args.username.strip()
    if not username or len(username) > USERNAME_MAX_LEN:
        print("Invalid username length.", file=sys.stderr)
        return 1
    if not (PASSWORD_MIN_LEN <= len(args.password) <= PASSWORD_MAX_LEN):
        print(
            f"Password must be {PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters.",
            file=sys.stderr,
        )
        return 1
    roles = sorted(set(args.roles or [Role.USER.value]))

    db = SessionLocal()
    try:
        existing = db.query(User).filter(User.username == username).first()
        if existing:
            print(f"User '{username}' already exists.", file=sys.stderr)
            return 1
        user = User(
            username=username,
            password_hash=hash_password(args.password),
            role_assignments=[UserRole(role=r) for r in roles],
        )
        db.add(user)
        db.commit()
        print(f"Created user '{username}' with roles {', '.join(roles)}.")
        return 0
    except SQLAlchemyError as e:
        db.rollback()
        print(f"Database error: {type(e).__name__}", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
