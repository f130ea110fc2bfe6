"""Create or update a local account, e.g. the studio admin."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from lashstudio import create_app
from lashstudio.auth import set_password
from lashstudio.extensions import db
from lashstudio.models import User
from lashstudio.repositories import UserRepository


def upsert_account(email: str, password: str, role: str, first_name: str) -> None:
    app = create_app()
    with app.app_context():
        user = UserRepository.get_by_email(email)
        if user is None:
            user = User(email=email.strip().lower(), first_name=first_name, last_name="", role=role)
            print(f"Created new {role} user: {email}")
        elif user.role != role:
            print(f"Updating user role from '{user.role}' to '{role}'")
            user.role = role

        set_password(user, password)
        db.session.commit()
        print(f"Password for {role} user '{email}' has been set.")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Set a user password for local testing.")
    parser.add_argument("email", help="User email address")
    parser.add_argument("password", help="Plain-text password to hash and store")
    parser.add_argument("--role", choices=["customer", "admin"], default="admin")
    parser.add_argument("--first-name", default="Studio")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    upsert_account(args.email, args.password, args.role, args.first_name)


if __name__ == "__main__":
    main()
