"""
Command line entry point for provisioning users.

Examples:
    mc-provision init-db
    mc-provision create-user --login alice --email alice@example.com --password s3cret
    mc-provision reset-admin --password n3w-s3cret
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional, Sequence

import structlog

from provisioning.core.config import Settings, get_settings
from provisioning.core.database import build_engine, build_session_factory, init_db, unit_of_work
from provisioning.core.events import build_event_bus
from provisioning.core.exceptions import ProvisioningError
from provisioning.core.logging import configure_logging
from provisioning.core.redis import close_redis
from provisioning.models.user import User
from provisioning.schemas.users import AdminResetRequest, CreateUserRequest, UserResponse
from provisioning.services.bootstrap import ensure_admin_user
from provisioning.services.users import create_user, reset_admin_user


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mc-provision", description="Provision users and organizations.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables and the initial administrator")

    create = sub.add_parser("create-user", help="Create a user and its org membership")
    create.add_argument("--login", required=True)
    create.add_argument("--email", default="")
    create.add_argument("--name", default="")
    create.add_argument("--password", default="")
    create.add_argument("--org-id", type=int, default=None)
    create.add_argument("--org-name", default="")
    create.add_argument("--admin", action="store_true", help="Grant server admin")
    create.add_argument("--role", default=None, help="Org role when auto-assigned")

    reset = sub.add_parser("reset-admin", help="Re-issue the administrator's credentials")
    reset.add_argument("--login", default=None)
    reset.add_argument("--email", default=None)
    reset.add_argument("--password", default="")

    return parser


async def _run(args: argparse.Namespace, settings: Settings) -> Optional[User]:
    engine = build_engine(settings.database_url, echo=settings.debug)
    session_factory = build_session_factory(engine)
    bus = await build_event_bus(settings)
    try:
        if args.command == "init-db":
            await init_db(engine)
            async with unit_of_work(session_factory, bus) as uow:
                return await ensure_admin_user(uow, settings)

        if args.command == "create-user":
            req = CreateUserRequest(
                login=args.login,
                email=args.email,
                name=args.name,
                password=args.password,
                org_id=args.org_id,
                org_name=args.org_name,
                is_admin=args.admin,
                default_org_role=args.role,
            )
            async with unit_of_work(session_factory, bus) as uow:
                return await create_user(uow, req, settings)

        req = AdminResetRequest(
            login=args.login or settings.admin_user,
            email=args.email or settings.admin_email,
            password=args.password,
        )
        async with unit_of_work(session_factory, bus) as uow:
            return await reset_admin_user(uow, req, settings)
    finally:
        await close_redis()
        await engine.dispose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    log = structlog.get_logger()

    try:
        user = asyncio.run(_run(args, settings))
    except ProvisioningError as exc:
        log.error("cli.failed", command=args.command, error_code=exc.error_code)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if user is not None:
        print(UserResponse.model_validate(user).model_dump_json(indent=2))
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
