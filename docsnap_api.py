"""CLI entry-point to launch the docsnap history HTTP API."""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

import uvicorn

from core.logging_utils import configure_json_logging
from core.paths import resolve_working_dir
from core.settings import load_settings
from snapshots import __version__ as APP_VERSION
from snapshots.api import create_app
from snapshots.manager import BackupManager

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8766


def _resolve_bind_host(candidate: Optional[str]) -> str:
    host = (candidate or DEFAULT_HOST).strip()
    if not host:
        host = DEFAULT_HOST
    norm = host.lower()
    if norm == "localhost":
        return "127.0.0.1"
    if norm.startswith("::ffff:"):
        norm = norm.split("::ffff:")[-1]
    if norm == "::1":
        return "127.0.0.1"
    if norm.startswith("127."):
        return host if host.startswith("127.") else "127.0.0.1"
    raise ValueError(f"Refusing to bind API server to non-loopback host '{candidate}'. docsnap only serves on localhost.")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Start the local docsnap history API.")
    parser.add_argument("--host", default=None, help="Bind host (default from settings.json)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default from settings.json)")
    parser.add_argument(
        "--documents-root",
        dest="documents_root",
        default=None,
        help="Directory holding the live documents (default from settings.json, else the current directory)",
    )
    parser.add_argument(
        "--enforce-capacity",
        action="store_true",
        help="Trim stored history to the configured ceiling and exit instead of serving.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    args = parse_args(argv)
    working_dir = resolve_working_dir()
    settings = load_settings(working_dir)
    configure_json_logging(working_dir=working_dir, level=(settings.get("logging") or {}).get("level"))
    api_settings = settings.get("api") if isinstance(settings.get("api"), dict) else {}

    try:
        host = _resolve_bind_host(args.host or api_settings.get("host"))
    except ValueError as exc:
        logging.error("%s", exc)
        return 2
    port = args.port or api_settings.get("port") or DEFAULT_PORT
    try:
        port = int(port)
    except (TypeError, ValueError):
        port = DEFAULT_PORT

    documents_root = Path(args.documents_root or settings.get("documents_root") or Path.cwd())
    manager = BackupManager.from_working_dir(working_dir, documents_root=documents_root)
    try:
        manager.initialize()
        if args.enforce_capacity:
            summary = manager.enforce_capacity()
            logging.info("Removed %d entries, freed %d bytes", len(summary.removed), summary.freed_bytes)
            return 0

        app = create_app(manager, app_version=APP_VERSION)
        print(f"API listening on http://{host}:{port}", flush=True)
        uvicorn_config = uvicorn.Config(app, host=host, port=port, log_level="info", access_log=False)
        server = uvicorn.Server(uvicorn_config)
        server.run()
        return 0
    finally:
        manager.close()


if __name__ == "__main__":  # pragma: no cover - manual entry point
    raise SystemExit(main())
