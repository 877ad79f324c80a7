"""Bootstrap an admin account: ``ats-create-admin --email admin@example.com``."""
from __future__ import annotations

import argparse
import logging
import os
import sys

from ats.config import Settings
from ats.repository import AtsRepository
from ats.security import PasswordHasher, TokenIssuer
from ats.services import AuthService

LOGGER = logging.getLogger("ats.create_admin")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create the ATS admin user if it does not exist.")
    parser.add_argument("--email", default=os.getenv("ADMIN_EMAIL", "admin@example.com"))
    parser.add_argument("--name", default=os.getenv("ADMIN_NAME", "Admin User"))
    parser.add_argument(
        "--password",
        default=os.getenv("ADMIN_PASSWORD", ""),
        help="Defaults to $ADMIN_PASSWORD.",
    )
    parser.add_argument("--database-path", default=None, help="Defaults to $ATS_DB_PATH.")
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = build_parser().parse_args(argv)
    if len(args.password) < 6:
        LOGGER.error("Admin password must be at least 6 characters (--password or ADMIN_PASSWORD)")
        return 2

    settings = Settings.from_env()
    if args.database_path:
        settings = settings.model_copy(update={"database_path": args.database_path})

    repository = AtsRepository(settings.database_path)
    repository.connect()
    try:
        service = AuthService(
            repository,
            PasswordHasher(settings.password_hash_rounds),
            TokenIssuer(settings),
        )
        user, created = service.create_admin(
            email=args.email,
            name=args.name,
            password=args.password,
        )
    finally:
        repository.close()

    if created:
        LOGGER.info("Admin user created: id=%s email=%s", user.id, user.email)
    else:
        LOGGER.info("Admin user already exists: id=%s email=%s", user.id, user.email)
    return 0


if __name__ == "__main__":
    sys.exit(main())
