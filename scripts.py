#!/usr/bin/env python3
"""Development scripts for the EZ Ticketing service."""

import asyncio
import subprocess
import sys
from getpass import getpass


def start():
    """Start the development server."""
    subprocess.run([
        "uvicorn",
        "ez_ticketing.main:app",
        "--host", "0.0.0.0",
        "--port", "3000",
        "--reload"
    ])


def worker():
    """Start a Celery worker with the beat scheduler embedded."""
    subprocess.run([
        "celery", "-A", "ez_ticketing.tasks.celery_app:celery_app",
        "worker", "--beat", "--loglevel", "INFO"
    ])


def test():
    """Run the test suite."""
    sys.exit(subprocess.run(["pytest", "tests/"]).returncode)


def create_admin():
    """Create an admin account and print an access token for it."""
    from sqlalchemy import select

    from ez_ticketing.database import close_database, get_db_session, init_database
    from ez_ticketing.models.user import User, UserRole
    from ez_ticketing.utils.auth import create_access_token

    email = input("Admin email: ").strip().lower()
    first_name = input("First name: ").strip()
    password = getpass("Password: ")
    if not email or not first_name or not password:
        print("Email, first name and password are required")
        sys.exit(1)

    async def _create():
        await init_database()
        try:
            async with get_db_session() as session:
                user = (await session.execute(
                    select(User).where(User.email == email)
                )).scalar_one_or_none()
                if user is None:
                    user = User(email=email, first_name=first_name)
                    session.add(user)
                user.role = UserRole.ADMIN
                user.is_active = True
                user.set_password(password)
                await session.flush()
                return str(user.id)
        finally:
            await close_database()

    user_id = asyncio.run(_create())
    print(f"Admin {email} ready (id {user_id})")
    print(f"Access token: {create_access_token(user_id, email=email)}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts.py <command>")
        print("Commands: start, worker, test, create-admin")
        sys.exit(1)

    command = sys.argv[1].replace("-", "_")
    if hasattr(sys.modules[__name__], command):
        getattr(sys.modules[__name__], command)()
    else:
        print(f"Unknown command: {sys.argv[1]}")
        sys.exit(1)
