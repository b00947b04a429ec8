"""Command line interface for multipart uploader."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from rich.logging import RichHandler

from .cli_progress import UploadProgressDisplay, console, render_configuration_summary, render_result
from .models import MB, ChecksumPolicy, UploadConfig


ENV_API_ENDPOINT = "UPLOADER_API_ENDPOINT"
ENV_AUTH_TOKEN = "UPLOADER_AUTH_TOKEN"
ENV_FILE = "UPLOADER_ENV_FILE"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
HTTP_LOGGERS = ("httpx", "httpcore")


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _resolve_log_level(debug: bool, silent: bool, log_level: Optional[str]) -> Optional[int]:
    """Pick the root log level; ``None`` means silent."""
    if silent:
        return None
    if debug:
        return logging.DEBUG
    if not log_level:
        return None
    name = log_level.strip().upper()
    if name not in LOG_LEVELS:
        raise CLIError(f"unknown log level {log_level!r} (use one of {', '.join(LOG_LEVELS)})")
    return getattr(logging, name)


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Route logs through rich on the progress console.

    Silent unless --debug or --log-level is given, so the progress bar is
    the only output. Returns the effective mode for the summary panel.
    """
    level = _resolve_log_level(debug, silent, log_level)
    logging.disable(logging.NOTSET)

    if level is None:
        logging.basicConfig(level=logging.CRITICAL + 1, handlers=[logging.NullHandler()], force=True)
        logging.disable(logging.CRITICAL)
        return "silent"

    handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=level <= logging.DEBUG,
    )
    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)
    # httpx logs every request at INFO
    http_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(http_level)
    return logging.getLevelName(level)


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _read_env_file(path: Path) -> Dict[str, str]:
    """
    Parse ``KEY=VALUE`` lines of a .env file.

    Accepts an ``export`` prefix, full-line comments and `` # comment``
    tails on unquoted values; malformed lines are skipped.
    """
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        raise CLIError(f"env file not found: {path}") from None
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    values: Dict[str, str] = {}
    for line in lines:
        line = line.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key or key.startswith("#"):
            continue
        value = value.strip()
        if value[:1] not in ("'", '"'):
            value = value.split(" #", 1)[0].rstrip()
        values[key] = _strip_quotes(value)
    return values


def _apply_env(values: Dict[str, str], override: bool = False) -> List[str]:
    """Export ``values`` into ``os.environ``; returns the keys actually set."""
    applied = [key for key in values if override or key not in os.environ]
    for key in applied:
        os.environ[key] = values[key]
    return applied


def _find_env_file(explicit: Optional[Path]) -> Optional[Path]:
    """--env-file, then $UPLOADER_ENV_FILE, then ./.env when present."""
    if explicit is not None:
        return explicit
    from_env = os.getenv(ENV_FILE)
    if from_env:
        return Path(from_env).expanduser()
    default = Path(".env")
    return default if default.is_file() else None


def _parse_params(items: Optional[List[str]]) -> Dict[str, str]:
    """Turn repeated ``KEY=VALUE`` options into a dict."""
    params: Dict[str, str] = {}
    for item in items or []:
        if "=" not in item:
            raise CLIError(f"--param expects KEY=VALUE, got {item!r}")
        key, value = item.split("=", 1)
        key = key.strip()
        if not key:
            raise CLIError(f"--param has an empty key: {item!r}")
        params[key] = _strip_quotes(value.strip())
    return params


def _build_config(args: argparse.Namespace) -> UploadConfig:
    """Environment defaults, then command line overrides."""
    try:
        base = UploadConfig.from_env()
        return base.with_overrides(
            part_size=int(args.part_size_mb * MB) if args.part_size_mb else None,
            min_concurrency=args.min_concurrency,
            max_concurrency=args.max_concurrency,
            checksum_policy=ChecksumPolicy(args.checksum_policy) if args.checksum_policy else None,
            checksum_algorithm=args.algorithm,
        )
    except ValueError as exc:
        raise CLIError(f"invalid configuration: {exc}") from exc


async def _run_upload(
    source: Path,
    api_endpoint: str,
    auth_token: Optional[str],
    config: UploadConfig,
    submission_id: Optional[str],
    endpoint_params: Dict[str, str],
) -> int:
    from .orchestrator import MultipartUploadOrchestrator

    display = UploadProgressDisplay(source.name, source.stat().st_size)
    display.start()
    try:
        async with MultipartUploadOrchestrator(api_endpoint, auth_token, config=config) as uploader:
            result = await uploader.upload_file(
                source,
                on_progress=display.get_callback(),
                submission_id=submission_id,
                endpoint_params=endpoint_params,
            )
    finally:
        display.stop()

    render_result(result)
    return 0 if result.success else 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mpu-up",
        description="Upload a file through a presigned-URL multipart upload API.",
    )
    parser.add_argument("source", nargs="?", type=Path, help="File to upload")
    parser.add_argument(
        "-e",
        "--endpoint",
        default=None,
        help=f"START endpoint URL (default from {ENV_API_ENDPOINT})",
    )
    parser.add_argument(
        "-t",
        "--token",
        default=None,
        help=f"Bearer token for the API (default from {ENV_AUTH_TOKEN})",
    )
    parser.add_argument("--part-size-mb", type=float, default=None, help="Part size in MB")
    parser.add_argument("--min-concurrency", type=int, default=None, help="Minimum parallel parts")
    parser.add_argument("--max-concurrency", type=int, default=None, help="Maximum parallel parts")
    parser.add_argument(
        "--checksum-policy",
        choices=[p.value for p in ChecksumPolicy],
        default=None,
        help="Send the checksum with START (hash first) or with COMPLETE (hash while uploading)",
    )
    parser.add_argument(
        "--algorithm",
        choices=["sha256", "blake3"],
        default=None,
        help="Checksum algorithm (default sha256)",
    )
    parser.add_argument("--submission-id", default=None, help="Submission id sent with START")
    parser.add_argument(
        "-p",
        "--param",
        action="append",
        default=None,
        metavar="KEY=VALUE",
        help="Extra START field (repeatable), e.g. collection_name=raw",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help=f"Load environment variables from this .env file (default: ${ENV_FILE}, then ./.env)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="mpu-up (from multipart_uploader)",
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    env_file = _find_env_file(args.env_file)
    env_keys: List[str] = []
    try:
        if env_file is not None:
            env_keys = _apply_env(_read_env_file(env_file))
        effective_log_mode = _setup_logging(
            debug=args.debug,
            silent=args.silent,
            log_level=args.log_level or os.getenv("LOG_LEVEL"),
        )
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if args.source is None:
        parser.print_help()
        return 0

    source = Path(args.source).expanduser()
    if not source.is_file():
        print(f"ERROR: source is not a file: {source}", file=sys.stderr)
        return 1

    api_endpoint = args.endpoint or os.getenv(ENV_API_ENDPOINT)
    if not api_endpoint:
        print(f"ERROR: no endpoint given and {ENV_API_ENDPOINT} is not set", file=sys.stderr)
        return 1
    auth_token = args.token or os.getenv(ENV_AUTH_TOKEN)

    try:
        config = _build_config(args)
        endpoint_params = _parse_params(args.param)
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    render_configuration_summary(
        {
            "Source": str(source),
            "Size": f"{source.stat().st_size} bytes",
            "Endpoint": api_endpoint,
            "Auth": "bearer" if auth_token else "(none)",
            "Part Size": f"{config.part_size // MB} MB",
            "Concurrency": f"{config.min_concurrency}-{config.max_concurrency}",
            "Checksum": f"{config.checksum_algorithm} at {config.checksum_policy.value}",
            "Params": ", ".join(f"{k}={v}" for k, v in endpoint_params.items()) or "-",
            "Env File": f"{env_file} ({len(env_keys)} set)" if env_file else "-",
            "Logging": effective_log_mode,
        }
    )

    try:
        return asyncio.run(
            _run_upload(
                source=source,
                api_endpoint=api_endpoint,
                auth_token=auth_token,
                config=config,
                submission_id=args.submission_id,
                endpoint_params=endpoint_params,
            )
        )
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
