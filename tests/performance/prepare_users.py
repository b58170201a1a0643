"""
Pre-register the credential pool used by capacity runs.

Registering users inside a load run measures password hashing rather
than the chat system, so this script creates (or confirms) a fixed set
of accounts beforehand and writes them to the users file that
:class:`~chatload.auth.CredentialPool` reads.

Usage::

    USER_COUNT=500 python tests/performance/prepare_users.py
    python tests/performance/prepare_users.py --count 50 --output data/users.json

Exit codes:

- ``0`` at least one account is usable
- ``1`` no account could be prepared
- ``2`` bad arguments or the users file could not be written
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

import requests

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from chatload.auth import DEFAULT_PASSWORD, CredentialPool, acquire_session  # noqa: E402
from chatload.config import HarnessSettings, get_config  # noqa: E402
from chatload.errors import AuthFailure  # noqa: E402
from chatload.log import configure_logging  # noqa: E402
from chatload.models import Credentials  # noqa: E402

logger = logging.getLogger("prepare_users")

EXIT_OK = 0
EXIT_NO_USERS = 1
EXIT_SCRIPT_ERROR = 2


def pool_credentials(index: int, pool: CredentialPool) -> Credentials:
    """Entry *index* (1-based) of *pool*, or a deterministic generated identity."""
    if index <= len(pool):
        return list(pool)[index - 1]
    username = f"loadtest_user_{index}"
    return Credentials(
        username=username,
        email=f"{username}@example.com",
        password=DEFAULT_PASSWORD,
        nickname=f"Load Tester {index}",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    config_class = get_config()
    parser = argparse.ArgumentParser(description="Register the load-test user pool.")
    parser.add_argument(
        "--count",
        type=int,
        default=int(os.environ["USER_COUNT"]) if os.environ.get("USER_COUNT") else None,
        help="Number of users (defaults to USER_COUNT, then the current pool size, then 5)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=config_class.USERS_FILE,
        help="Users file to read and rewrite",
    )
    parser.add_argument("--base-url", default=None, help="Auth base URL incl. API prefix")
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def prepare_users(
    base_url: str,
    count: int,
    pool: CredentialPool,
    *,
    http: requests.Session | None = None,
    timeout: float = 10.0,
) -> list[Credentials]:
    """Log in (registering when needed) each of *count* users; return those that worked."""
    prepared = []
    http = http or requests.Session()
    for index in range(1, count + 1):
        credentials = pool_credentials(index, pool)
        try:
            acquire_session(base_url, credentials, http=http, timeout=timeout)
        except AuthFailure as exc:
            logger.error("User preparation failed index=%d email=%s error=%s", index, credentials.email, exc)
            continue
        prepared.append(credentials)
    return prepared


def write_users_file(path: Path, users: list[Credentials]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [
        {
            "username": user.username,
            "email": user.email,
            "password": user.password,
            "nickname": user.nickname,
        }
        for user in users
    ]
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
        handle.write("\n")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)

    pool = CredentialPool.from_file(args.output)
    settings = HarnessSettings.from_config(pool=pool)
    count = args.count or len(pool) or 5
    if count < 1:
        logger.error("--count must be positive")
        return EXIT_SCRIPT_ERROR

    base_url = args.base_url or settings.base_url
    logger.info("Preparing %d users against %s", count, base_url)
    with requests.Session() as http:
        prepared = prepare_users(base_url, count, pool, http=http, timeout=settings.http_timeout)

    logger.info("Prepared %d/%d users", len(prepared), count)
    if not prepared:
        logger.error("No usable accounts; the users file was left unchanged")
        return EXIT_NO_USERS

    try:
        write_users_file(args.output, prepared)
    except OSError as exc:
        logger.error("Could not write %s: %s", args.output, exc)
        return EXIT_SCRIPT_ERROR
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
