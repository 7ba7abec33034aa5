#!/usr/bin/env python3
"""
Create (or look up) a user and print a bearer token for it.

Identity normally comes from the authentication provider; this is for local
development and demos.

Usage:
    python scripts/create_user.py alice alice@example.com
    python scripts/create_user.py root root@example.com --role admin --minutes 120
"""

import argparse
import asyncio
from datetime import timedelta

from app.core.security import create_access_token
from app.database import AsyncSessionLocal, engine
from app.services.user_service import UserService


async def create_user(
    username: str,
    email: str,
    full_name: str | None,
    role: str,
    minutes: int,
) -> None:
    """Ensure the user exists and print its id and an access token."""
    async with AsyncSessionLocal() as db:
        user = await UserService.get_user_by_username(db, username)
        if user:
            print(f"User '{username}' already exists")
        else:
            user = await UserService.create_user(
                db, username=username, email=email, full_name=full_name, role=role
            )
            print(f"✓ Created {role} '{username}'")

    await engine.dispose()

    token = create_access_token(
        {"sub": str(user["id"]), "username": user["username"]},
        expires_delta=timedelta(minutes=minutes),
    )
    print(f"User ID: {user['id']}")
    print(f"Token:   {token}")


def main() -> None:
    """Parse arguments and run."""
    parser = argparse.ArgumentParser(description="Create a user and print an access token")
    parser.add_argument("username")
    parser.add_argument("email")
    parser.add_argument("--full-name", default=None)
    parser.add_argument("--role", choices=["patient", "admin"], default="patient")
    parser.add_argument("--minutes", type=int, default=60, help="Token lifetime")
    args = parser.parse_args()

    asyncio.run(create_user(args.username, args.email, args.full_name, args.role, args.minutes))


if __name__ == "__main__":
    main()
