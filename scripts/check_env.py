"""Pre-flight check for the gateway's configuration.

Loads ``AppSettings`` from an env file and reports everything that would stop
the gateway from starting or from completing an authorization:

* missing or invalid settings,
* an encryption key that does not decode to 32 bytes,
* an OAuth scope list without ``offline_access`` (no refresh tokens),
* a state database directory that does not exist.

Deployment hygiene issues (plain-http redirect URI or open maintenance hooks
outside development) are reported as warnings and only fail with ``--strict``.

Example::

    python -m scripts.check_env --env-file /srv/accounting-gateway/.env --strict
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from pydantic import ValidationError

from accounting_gateway.core.config import AppSettings, _load_env_file
from accounting_gateway.services.token_cipher import parse_encryption_key

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_WARNINGS = 3
EXIT_RUNTIME_ERROR = 5

_LOCAL_ENVIRONMENTS = {"development", "local", "test"}


def find_problems(settings: AppSettings) -> list[str]:
    """Return configuration errors that prevent the gateway from working."""
    problems: list[str] = []
    try:
        parse_encryption_key(settings.security.encryption_key)
    except ValueError as exc:
        problems.append(f"ENCRYPTION_KEY: {exc}")
    if "offline_access" not in settings.oauth.scopes:
        problems.append("OAUTH_SCOPES: offline_access is required to receive refresh tokens")
    db_dir = Path(settings.state_db_path).expanduser().resolve().parent
    if not db_dir.is_dir():
        problems.append(f"STATE_DB_PATH: directory {db_dir} does not exist")
    return problems


def find_warnings(settings: AppSettings) -> list[str]:
    if settings.environment.lower() in _LOCAL_ENVIRONMENTS:
        return []
    warnings: list[str] = []
    if settings.xero.redirect_uri.scheme != "https":
        warnings.append("XERO_REDIRECT_URI: authorization codes would travel over plain http")
    if not settings.security.maintenance_token:
        warnings.append("MAINTENANCE_TOKEN: maintenance hooks are unauthenticated")
    return warnings


def _summary(settings: AppSettings) -> str:
    return (
        f"environment={settings.environment} "
        f"redirect_uri={settings.xero.redirect_uri} "
        f"scopes={' '.join(settings.oauth.scopes)} "
        f"state_db={settings.state_db_path}"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Validate the gateway configuration.")
    parser.add_argument(
        "--env-file",
        default=".env",
        type=Path,
        help="Path to the environment file (default: .env in the working directory).",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Treat deployment warnings as failures.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file
    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    _load_env_file(str(env_file))
    try:
        settings = AppSettings()  # type: ignore[call-arg]
    except ValidationError as exc:
        fields = sorted({str(error["loc"][-1]) for error in exc.errors() if error["loc"]})
        print(f"Missing or invalid settings: {', '.join(fields)}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR

    problems = find_problems(settings)
    for problem in problems:
        print(f"error: {problem}", file=sys.stderr)
    if problems:
        return EXIT_VALIDATION_ERROR

    warnings = find_warnings(settings)
    for warning in warnings:
        print(f"warning: {warning}", file=sys.stderr)

    print(f"Configuration OK: {_summary(settings)}")
    if warnings and args.strict:
        return EXIT_WARNINGS
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
