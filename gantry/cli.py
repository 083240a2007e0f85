"""Developer tooling for Gantry applications."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from importlib import import_module
from typing import Any

from infrastructure.configuration import configure_logging

from .app import GantryApp

LOGGER = logging.getLogger("gantry.cli")


def _parse_app_path(path: str) -> tuple[str, str]:
    module_name, _, attr = path.partition(":")
    return module_name, attr or "app"


def _load_app(path: str | None) -> GantryApp:
    target = path or os.getenv("GANTRY_APP")
    if not target:
        raise RuntimeError("Unable to locate a Gantry application. Provide --app or set GANTRY_APP")
    module_name, attr_name = _parse_app_path(target)
    if os.getcwd() not in sys.path:
        sys.path.insert(0, os.getcwd())
    module = import_module(module_name)
    if not hasattr(module, attr_name):
        raise RuntimeError(f"Module '{module_name}' does not define '{attr_name}'")
    app = getattr(module, attr_name)
    if not isinstance(app, GantryApp):
        raise RuntimeError(f"'{module_name}:{attr_name}' is not a GantryApp")
    return app


def _cmd_routes(args: argparse.Namespace) -> int:
    app = _load_app(args.app_path)
    for route in app.route_table:
        print(f"{route.method:<7} {route.path}")
        for stage, units in route.pipeline.describe().items():
            if units:
                print(f"    {stage}: {', '.join(units)}")
    return 0


def _parse_header(raw: str) -> tuple[str, str]:
    name, sep, value = raw.partition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"header must look like 'Name: value', got {raw!r}")
    return name.strip(), value.strip()


def _cmd_call(args: argparse.Namespace) -> int:
    app = _load_app(args.app_path)
    body = args.data.encode() if args.data else b""
    headers: list[tuple[str, str]] = list(args.header or [])
    if args.data and not any(k.lower() == "content-type" for k, _ in headers):
        headers.append(("content-type", "application/json"))

    async def _call() -> Any:
        await app.startup()
        try:
            return await app.dispatch(args.method, args.path, headers, body)
        finally:
            await app.shutdown()

    response = asyncio.run(_call())
    print(response.status_code)
    for key, value in sorted(response.headers.items()):
        print(f"{key}: {value}")
    print()
    print(response.text)
    LOGGER.debug(json.dumps({"event": "cli.call", "status": response.status_code}))
    return 0 if response.status_code < 400 else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="gantry")
    sub = parser.add_subparsers(dest="cmd")

    routes = sub.add_parser("routes", help="List compiled routes and their chains")
    routes.add_argument(
        "--app",
        dest="app_path",
        help="Python path to the Gantry app, e.g. 'main:app' (default: GANTRY_APP)",
    )
    routes.set_defaults(func=_cmd_routes)

    call = sub.add_parser("call", help="Dispatch one request in-process")
    call.add_argument("method")
    call.add_argument("path")
    call.add_argument("--app", dest="app_path")
    call.add_argument("-H", "--header", action="append", type=_parse_header)
    call.add_argument("-d", "--data", help="Request body (sent as JSON)")
    call.set_defaults(func=_cmd_call)

    args = parser.parse_args(argv)
    configure_logging()
    if not hasattr(args, "func"):
        parser.print_help()
        return 2
    try:
        return args.func(args)
    except RuntimeError as exc:
        LOGGER.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
