"""Script to run Alembic migrations.

Usage:
    python scripts/migrate.py                      # upgrade to head
    python scripts/migrate.py create <message>     # autogenerate a revision
    python scripts/migrate.py downgrade <revision>
"""

import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def _config() -> Config:
    return Config(str(ALEMBIC_INI))


def run_migrations(revision: str = "head") -> None:
    """Upgrade the database to ``revision``."""
    try:
        print(f"Upgrading database to {revision}...")
        command.upgrade(_config(), revision)
        print("✓ Migrations completed successfully!")
    except Exception as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        sys.exit(1)


def downgrade(revision: str) -> None:
    """Downgrade the database to ``revision``."""
    try:
        print(f"Downgrading database to {revision}...")
        command.downgrade(_config(), revision)
        print("✓ Downgrade completed successfully!")
    except Exception as e:
        print(f"✗ Downgrade failed: {e}", file=sys.stderr)
        sys.exit(1)


def create_migration(message: str) -> None:
    """Autogenerate a revision from the table definitions."""
    try:
        print(f"Creating migration: {message}")
        command.revision(_config(), message=message, autogenerate=True)
        print("✓ Migration created successfully!")
    except Exception as e:
        print(f"✗ Migration creation failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    args = sys.argv[1:]
    if not args:
        run_migrations()
    elif args[0] == "create" and len(args) > 1:
        create_migration(" ".join(args[1:]))
    elif args[0] == "downgrade" and len(args) == 2:
        downgrade(args[1])
    else:
        print(__doc__)
        sys.exit(2)
