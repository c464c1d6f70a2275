from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict

import uvicorn

from .api import app
from .compute import balance_document
from .sources.cliproxy import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_S, fetch_quota_document


def _port_type(value: str) -> int:
    try:
        port = int(value)
    except Exception:
        raise argparse.ArgumentTypeError(f"Invalid port {value!r}. Must be an integer in 1..65535.")

    if not (1 <= port <= 65535):
        raise argparse.ArgumentTypeError(f"Invalid port {port}. Valid range is 1..65535.")

    return port


def _default_port() -> int:
    raw = os.environ.get("BALQUOTA_PORT", "55425")
    try:
        return _port_type(raw)
    except argparse.ArgumentTypeError as e:
        raise SystemExit(f"Invalid BALQUOTA_PORT={raw!r}. {e} Use --port <1-65535>.")


def _default_timeout() -> float:
    raw = os.environ.get("BALQUOTA_TIMEOUT", str(DEFAULT_TIMEOUT_S))
    try:
        return float(raw)
    except ValueError:
        raise SystemExit(f"Invalid BALQUOTA_TIMEOUT={raw!r}. Use --timeout <seconds>.")


def build_parser(prog: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description="Balanced quota across CLIProxyAPI providers")
    parser.add_argument(
        "command",
        nargs="?",
        default="balance",
        choices=["balance", "fetch", "serve"],
        help="Command (default: balance)",
    )

    # Management API options
    parser.add_argument(
        "--key",
        default=os.environ.get("BALQUOTA_MANAGEMENT_KEY"),
        help="CLIProxyAPI management key (default: $BALQUOTA_MANAGEMENT_KEY)",
    )
    parser.add_argument(
        "--base-url",
        default=os.environ.get("BALQUOTA_BASE_URL", DEFAULT_BASE_URL),
        help=f"Management API base URL (default: {DEFAULT_BASE_URL})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-request timeout in seconds (default: 30)",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="fetch: suppress the connection line and summary on stderr",
    )

    # Balance options
    parser.add_argument(
        "--input",
        type=str,
        help='balance: read a saved quota document ("-" for stdin) instead of fetching',
    )
    parser.add_argument(
        "--output",
        type=str,
        help="Write output to a file instead of stdout",
    )

    # Serve options
    parser.add_argument(
        "--bind",
        "--host",
        dest="bind",
        default=os.environ.get("BALQUOTA_HOST", "127.0.0.1"),
        help="Bind address (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=_port_type,
        default=None,
        help="Port to listen on (default: 55425)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("BALQUOTA_LOG_LEVEL", "info"),
        help="Log level, also passed to uvicorn (default: info)",
    )

    return parser


def _write(payload: str, output: str | None) -> None:
    if output:
        Path(output).write_text(payload + "\n", encoding="utf-8")
    else:
        print(payload)


def _require_key(key: str | None) -> str:
    if not key:
        raise ValueError("Missing management key. Pass --key or set BALQUOTA_MANAGEMENT_KEY.")
    return key


def _read_document(path: str) -> Any:
    if path == "-":
        return json.load(sys.stdin)
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def fetch(key: str | None, base_url: str, timeout_s: float, quiet: bool, output: str | None) -> int:
    key = _require_key(key)
    if not quiet:
        print(f"Connecting to CLIProxyAPI at {base_url}...", file=sys.stderr)

    document = fetch_quota_document(base_url, key, timeout_s)
    _write(json.dumps(document, indent=2), output)

    results = document["results"]
    error_count = sum(1 for r in results if r.get("status") == "error")
    if not quiet:
        success_count = sum(1 for r in results if r.get("status") == "success")
        print(f"\n✓ Success: {success_count}, ✗ Errors: {error_count}", file=sys.stderr)

    return 1 if error_count else 0


def balance(
    key: str | None, base_url: str, timeout_s: float, input_path: str | None, output: str | None
) -> int:
    if input_path:
        document = _read_document(input_path)
    else:
        document = fetch_quota_document(base_url, _require_key(key), timeout_s)

    balanced: Dict[str, float] = balance_document(document)
    _write(json.dumps(balanced, indent=2), output)
    return 0


def serve(host: str, port: int, log_level: str) -> None:
    url_host = "localhost" if host in {"0.0.0.0", "::"} else host
    print(f"🚀 Starting balquota on http://{url_host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=log_level)


def cli(argv: list[str] | None = None, prog: str = "balquota") -> int:
    parser = build_parser(prog=prog)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command == "serve":
        port = args.port if args.port is not None else _default_port()
        serve(args.bind, port, args.log_level)
        return 0

    timeout_s = args.timeout if args.timeout is not None else _default_timeout()
    try:
        if args.command == "fetch":
            return fetch(args.key, args.base_url, timeout_s, args.quiet, args.output)
        if args.command == "balance":
            return balance(args.key, args.base_url, timeout_s, args.input, args.output)
    except (RuntimeError, OSError, ValueError) as e:
        if not (args.command == "fetch" and args.quiet):
            print(f"Error: {e}", file=sys.stderr)
        return 1

    parser.error(f"Unknown command: {args.command}")
    return 2


def main() -> None:
    raise SystemExit(cli())
