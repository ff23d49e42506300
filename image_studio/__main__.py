"""CLI entry point: python -m image_studio.

Usage:
    python -m image_studio --env .env --serve
    python -m image_studio --env .env --list-keys
    python -m image_studio --env .env --generate "a lighthouse at dusk" --output lighthouse.png
    python -m image_studio --env .env --enhance "a cat"
    python -m image_studio --self-test
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

import httpx
from rich.console import Console
from rich.logging import RichHandler

from image_studio.config import Settings, load_credentials
from image_studio.dispatcher import Dispatcher
from image_studio.errors import ImageStudioError, NoCredentialsConfiguredError
from image_studio.features import ImageStudio, gemini_client_factory
from image_studio.models import FEATURES, InlineImage
from image_studio.output import render_usage, snapshot_payload, write_json
from image_studio.security import redact_key, suppress_credential_logging


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="image_studio",
        description="Gemini image generation with API key rotation, health tracking, and retry.",
    )
    p.add_argument("--env", type=Path, default=Path(".env"), help="Path to .env file (default: .env)")
    p.add_argument("--serve", action="store_true", help="Run the JSON HTTP API")
    p.add_argument("--host", help="Bind address for --serve")
    p.add_argument("--port", type=int, help="Port for --serve")
    p.add_argument("--list-keys", action="store_true", help="Show configured keys and feature mapping, no API calls")
    p.add_argument("--generate", metavar="PROMPT", help="Generate one image from PROMPT")
    p.add_argument("--enhance", metavar="PROMPT", help="Print an enhanced version of PROMPT")
    p.add_argument("--feature", default="text-to-image", choices=sorted(FEATURES),
                   help="Feature tag used by --generate (default: text-to-image)")
    p.add_argument("--output", type=Path, help="Where --generate writes the image (default: image.<ext>)")
    p.add_argument("--json", action="store_true", help="Print the key usage snapshot as JSON after the run")
    p.add_argument("--self-test", action="store_true", help="Run offline dispatcher self-test")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    p.add_argument("--version", action="store_true", help="Show version and exit")
    return p


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    suppress_credential_logging()


async def _run_once(args: argparse.Namespace, settings: Settings, slots: dict[str, str],
                    console: Console) -> int:
    async with httpx.AsyncClient(timeout=settings.timeout) as http:
        dispatcher = Dispatcher.from_settings(
            slots, settings, client_factory=gemini_client_factory(http, settings),
        )
        studio = ImageStudio(dispatcher, settings)
        code = 0
        if args.enhance:
            console.print(await studio.enhance_prompt(args.enhance))
        if args.generate:
            try:
                data_url = await studio.generate_image(args.generate, args.feature)
            except ImageStudioError as exc:
                console.print(f"[red]{exc}[/red]")
                code = 1
            else:
                image = InlineImage.from_data_url(data_url)
                out = args.output or Path(f"image.{image.extension}")
                out.write_bytes(image.decode())
                console.print(f"[green]Image written to {out}[/green] ({image.mime_type})")
        if args.json:
            print(json.dumps(snapshot_payload(dispatcher.usage_snapshot(), dispatcher.system_snapshot()),
                             indent=2, ensure_ascii=False))
        return code


def _list_keys(slots: dict[str, str], console: Console, output: Optional[Path]) -> int:
    dispatcher = Dispatcher.from_settings(slots, Settings())
    rows = dispatcher.usage_snapshot()
    fingerprints = {name: redact_key(dispatcher.pool.credential(name).secret) for name in dispatcher.pool}
    render_usage(rows, dispatcher.system_snapshot(), console, fingerprints)
    if output:
        payload = snapshot_payload(rows, dispatcher.system_snapshot())
        return 0 if write_json(payload, output, console) else 2
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    console = Console()

    if args.version:
        from image_studio import __version__
        console.print(f"image_studio {__version__}")
        return 0

    _setup_logging(args.verbose)

    if args.self_test:
        from image_studio.self_test import run_self_test
        ok = asyncio.run(run_self_test(console))
        return 0 if ok else 1

    try:
        settings = Settings.from_env(args.env)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        return 2
    if args.host:
        settings = replace(settings, host=args.host)
    if args.port:
        settings = replace(settings, port=args.port)
    slots = load_credentials(args.env)

    try:
        if args.list_keys:
            return _list_keys(slots, console, args.output)
        if args.serve:
            from image_studio.server import serve
            return serve(settings, slots, console)
        if args.generate or args.enhance:
            return asyncio.run(_run_once(args, settings, slots, console))
    except NoCredentialsConfiguredError as exc:
        console.print(f"[red]{exc}[/red]")
        console.print("[dim]Set GEMINI_API_KEY (or GEMINI_API_KEY_1..9) in the environment or in --env.[/dim]")
        return 2

    console.print("[red]Nothing to do: use --serve, --list-keys, --generate, --enhance or --self-test[/red]")
    return 2


if __name__ == "__main__":
    sys.exit(main())
