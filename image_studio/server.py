"""JSON HTTP API for the feature operations and key monitoring.

Request handlers run on server threads, but every Dispatcher call is
marshalled onto one event loop owned by StudioRuntime, so pool and health
state only ever change on that loop.

Routes:
  POST /api/enhance-prompt   {prompt}
  POST /api/generate-image   {prompt, enhancePrompt?, feature?}
  POST /api/edit-image       {originalPrompt?, editInstructions, originalImageData?, editedImageData?, maskData?}
  POST /api/style-transfer   {stylePrompt, strength?, imageData?, prompt?}
  POST /api/photo-restore    {imageData, prompt?, restorationType?}
  GET  /api/monitor-keys     ?action=stats|status
  POST /api/monitor-keys     {action: "reset", keyName}
  GET  /health
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from concurrent.futures import Future
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar
from urllib.parse import parse_qs, urlsplit

import httpx
from rich.console import Console

from image_studio.config import Settings
from image_studio.dispatcher import Dispatcher
from image_studio.errors import FeatureError
from image_studio.features import (
    RESTORATION_DEFAULT_PROMPTS,
    ImageStudio,
    gemini_client_factory,
    style_strength,
)
from image_studio.models import FEATURES, RESTORATION_TYPES

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_BODY_BYTES = 20 * 1024 * 1024

_UNSUPPORTED_IMAGE_MARKERS = ("unsupported mime type", "image/avif", "image/webp")
_UNSUPPORTED_IMAGE_MESSAGE = (
    "Unsupported image format. Please ensure your image is in PNG or JPEG format. "
    "AVIF and WebP formats are not supported by the AI service."
)


class _BadRequest(Exception):
    def __init__(self, message: str, code: int = 400):
        self.code = code
        super().__init__(message)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class StudioRuntime:
    """Owns the event loop thread, the shared httpx client, and the Dispatcher.

    Building the runtime builds the pool, so a missing key configuration
    fails here, before any socket is opened.
    """

    def __init__(
        self,
        settings: Settings,
        slots: Mapping[str, str],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self.dispatcher = Dispatcher.from_settings(slots, settings, client_factory=self._client_for)
        self.studio = ImageStudio(self.dispatcher, settings)
        self._loop = asyncio.new_event_loop()
        self._thread: Optional[threading.Thread] = None

    def _client_for(self, credential):
        if self._http is None:
            raise RuntimeError("StudioRuntime is not started")
        return gemini_client_factory(self._http, self.settings)(credential)

    async def _setup(self) -> None:
        self._http = httpx.AsyncClient(timeout=self.settings.timeout, transport=self._transport)
        self.dispatcher.start_maintenance()

    async def _teardown(self) -> None:
        await self.dispatcher.stop_maintenance()
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def start(self) -> "StudioRuntime":
        if self._thread is not None:
            return self
        self._thread = threading.Thread(target=self._loop.run_forever, name="studio-loop", daemon=True)
        self._thread.start()
        self.run(self._setup())
        return self

    def close(self) -> None:
        if self._thread is None:
            return
        self.run(self._teardown())
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)
        self._thread = None
        self._loop.close()

    def run(self, coro: Awaitable[T]) -> T:
        """Run a coroutine on the runtime loop and block for its result."""
        future: Future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def call(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a plain Dispatcher method on the runtime loop."""
        async def _invoke() -> T:
            return fn(*args)
        return self.run(_invoke())

    def __enter__(self) -> "StudioRuntime":
        return self.start()

    def __exit__(self, *exc: object) -> None:
        self.close()


def _require_str(data: dict, field: str, message: str) -> str:
    value = data.get(field)
    if not value or not isinstance(value, str):
        raise _BadRequest(message)
    return value


def _optional_str(data: dict, field: str) -> Optional[str]:
    value = data.get(field)
    return value if isinstance(value, str) and value else None


def _make_handler(runtime: StudioRuntime):
    studio = runtime.studio
    dispatcher = runtime.dispatcher

    def enhance_prompt(data: dict) -> dict:
        prompt = _require_str(data, "prompt", "Prompt is required and must be a string")
        return {"originalPrompt": prompt, "enhancedPrompt": runtime.run(studio.enhance_prompt(prompt))}

    def generate_image(data: dict) -> dict:
        prompt = _require_str(data, "prompt", "Prompt is required and must be a string")
        feature = data.get("feature") or "text-to-image"
        if feature not in FEATURES:
            raise _BadRequest(f"Unknown feature: {feature}")
        final_prompt = prompt
        if data.get("enhancePrompt"):
            final_prompt = runtime.run(studio.enhance_prompt(prompt))
        image_url = runtime.run(studio.generate_image(final_prompt, feature))
        return {"imageUrl": image_url, "prompt": final_prompt, "originalPrompt": prompt, "feature": feature}

    def edit_image(data: dict) -> dict:
        original = _optional_str(data, "originalImageData")
        edited = _optional_str(data, "editedImageData")
        mask = _optional_str(data, "maskData")
        if original and edited:
            instructions = _require_str(data, "editInstructions",
                                        "Edit instructions are required for image editing")
            image_url = runtime.run(studio.edit_image(
                "Dual image editing with original and edited versions", instructions,
                original, edited, mask,
            ))
            return {"imageUrl": image_url, "editedPrompt": instructions,
                    "originalPrompt": "Dual image editing", "editInstructions": instructions}
        if edited or original:
            instructions = _require_str(data, "editInstructions",
                                        "Edit instructions are required for image editing")
            image_url = runtime.run(studio.edit_image(
                "Canvas image edit", instructions, edited or original, None, mask,
            ))
            return {"imageUrl": image_url, "editedPrompt": instructions,
                    "originalPrompt": "Canvas image", "editInstructions": instructions}
        prompt = _require_str(data, "originalPrompt", "Original prompt is required and must be a string")
        instructions = _require_str(data, "editInstructions", "Edit instructions are required and must be a string")
        image_url = runtime.run(studio.edit_image(prompt, instructions))
        return {"imageUrl": image_url, "editedPrompt": f"{prompt}, modified: {instructions}",
                "originalPrompt": prompt, "editInstructions": instructions}

    def style_transfer(data: dict) -> dict:
        style = _require_str(data, "stylePrompt", "Style prompt is required and must be a string")
        strength = data.get("strength", 80)
        if isinstance(strength, bool) or not isinstance(strength, (int, float)):
            raise _BadRequest("strength must be a number between 0 and 100")
        label = style_strength(strength)
        image = _optional_str(data, "imageData")
        if image:
            styled_prompt = (
                f"Apply {label} {style} style to this image. Transform the image to match the "
                "artistic style while preserving the main subject and composition."
            )
            try:
                image_url = runtime.run(studio.perform_style_transfer(styled_prompt, image))
            except FeatureError as exc:
                message = str(exc).lower()
                if "mime type" not in message and "format" not in message:
                    raise
                logger.warning("Style transfer rejected the image (%s); generating from text instead", exc)
                text_prompt = (
                    f"Create an image with {label} {style} artistic style. "
                    "Use vibrant colors and artistic techniques typical of this style."
                )
                image_url = runtime.run(studio.generate_image(text_prompt))
                return {"imageUrl": image_url, "appliedStyle": style, "originalPrompt": text_prompt}
            return {"imageUrl": image_url, "appliedStyle": styled_prompt,
                    "originalPrompt": "Image style transfer"}
        prompt = _require_str(data, "prompt", "Prompt is required for text-based style generation")
        applied = f"{style}, {label} style influence"
        image_url = runtime.run(studio.generate_image_with_style(prompt, applied))
        return {"imageUrl": image_url, "appliedStyle": applied, "originalPrompt": prompt}

    def photo_restore(data: dict) -> dict:
        image = _require_str(data, "imageData", "Image data is required for photo restoration")
        kind = data.get("restorationType") or "restore"
        if kind not in RESTORATION_TYPES:
            raise _BadRequest(f"restorationType must be one of: {', '.join(sorted(RESTORATION_TYPES))}")
        prompt = _optional_str(data, "prompt") or RESTORATION_DEFAULT_PROMPTS[kind]
        image_url = runtime.run(studio.perform_photo_restoration(prompt, image, kind))
        return {"imageUrl": image_url, "appliedRestoration": kind, "originalPrompt": prompt}

    feature_routes: dict[str, tuple[Callable[[dict], dict], str]] = {
        "/api/enhance-prompt": (enhance_prompt, "Failed to enhance prompt"),
        "/api/generate-image": (generate_image, "Failed to generate image"),
        "/api/edit-image": (edit_image, "Failed to edit image"),
        "/api/style-transfer": (style_transfer, "Failed to perform style transfer"),
        "/api/photo-restore": (photo_restore, "Failed to restore photo"),
    }

    class Handler(BaseHTTPRequestHandler):
        def log_message(self, format, *args):
            pass  # request lines go through logging instead

        def _json_response(self, code: int, data: dict) -> None:
            body = json.dumps(data).encode()
            self.send_response(code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.send_header("X-Content-Type-Options", "nosniff")
            self.send_header("X-Frame-Options", "DENY")
            self.send_header("Referrer-Policy", "no-referrer")
            self.end_headers()
            self.wfile.write(body)

        def _read_json(self) -> dict:
            try:
                length = int(self.headers.get("Content-Length", 0) or 0)
            except ValueError:
                raise _BadRequest("invalid Content-Length") from None
            if length < 0:
                raise _BadRequest("invalid Content-Length")
            if length > MAX_BODY_BYTES:
                raise _BadRequest("Request body too large", 413)
            raw = self.rfile.read(length) if length else b""
            try:
                data = json.loads(raw or b"{}")
            except (json.JSONDecodeError, UnicodeDecodeError):
                raise _BadRequest("invalid JSON") from None
            if not isinstance(data, dict):
                raise _BadRequest("JSON body must be an object")
            return data

        def do_GET(self):
            parts = urlsplit(self.path)
            if parts.path == "/health":
                status = runtime.call(dispatcher.system_snapshot)
                self._json_response(200, {"status": "ok", "credentials": status.total_credentials})
            elif parts.path == "/api/monitor-keys":
                action = (parse_qs(parts.query).get("action") or [""])[0]
                if action == "stats":
                    data: Any = [r.to_dict() for r in runtime.call(dispatcher.usage_snapshot)]
                elif action == "status":
                    data = runtime.call(dispatcher.system_snapshot).to_dict()
                else:
                    data = {
                        "system": runtime.call(dispatcher.system_snapshot).to_dict(),
                        "keys": [r.to_dict() for r in runtime.call(dispatcher.usage_snapshot)],
                    }
                self._json_response(200, {"success": True, "data": data, "timestamp": _timestamp()})
            else:
                self._json_response(404, {"error": "Not found"})

        def do_POST(self):
            path = urlsplit(self.path).path
            if path == "/api/monitor-keys":
                self._monitor_post()
                return
            route = feature_routes.get(path)
            if route is None:
                self._json_response(404, {"error": "Not found"})
                return
            handler, failure = route
            try:
                self._json_response(200, handler(self._read_json()))
            except _BadRequest as exc:
                self._json_response(exc.code, {"error": str(exc)})
            except Exception as exc:
                logger.error("Error in %s: %s", path, exc)
                if any(m in str(exc).lower() for m in _UNSUPPORTED_IMAGE_MARKERS):
                    self._json_response(400, {"error": _UNSUPPORTED_IMAGE_MESSAGE})
                    return
                self._json_response(500, {"error": failure, "details": str(exc)})

        def _monitor_post(self) -> None:
            try:
                data = self._read_json()
            except _BadRequest as exc:
                self._json_response(exc.code, {"success": False, "error": str(exc)})
                return
            key_name = data.get("keyName")
            if data.get("action") != "reset" or not key_name or not isinstance(key_name, str):
                self._json_response(400, {"success": False, "error": "Invalid action or missing keyName"})
                return
            ok = runtime.call(dispatcher.reset_one, key_name)
            message = (f"API key {key_name} rate limit has been reset" if ok
                       else f"API key {key_name} was not rate limited or doesn't exist")
            self._json_response(200, {"success": ok, "message": message, "timestamp": _timestamp()})

    return Handler


def create_server(runtime: StudioRuntime, host: str, port: int) -> ThreadingHTTPServer:
    server = ThreadingHTTPServer((host, port), _make_handler(runtime))
    server.daemon_threads = True
    return server


def serve(settings: Settings, slots: Mapping[str, str], console: Optional[Console] = None) -> int:
    console = console or Console()
    runtime = StudioRuntime(settings, slots).start()
    server = create_server(runtime, settings.host, settings.port)
    status = runtime.call(runtime.dispatcher.system_snapshot)

    console.print("[bold]image_studio — Gemini key rotation gateway[/bold]")
    console.print(f"[cyan]  Keys loaded:[/cyan]      {status.total_credentials}")
    console.print(f"[cyan]  Max attempts:[/cyan]     {settings.max_attempts}")
    console.print(f"[cyan]  Health reset:[/cyan]     every {settings.reset_interval:.0f}s")
    console.print(f"[cyan]  Listening on:[/cyan]     http://{settings.host}:{settings.port}")
    if settings.dispatch_log:
        console.print(f"[dim]  Dispatch log: {settings.dispatch_log}[/dim]")
    console.print("\n[dim]  Press Ctrl+C to stop[/dim]\n")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        console.print("\n[cyan]▸ image_studio stopped[/cyan]")
    finally:
        server.server_close()
        runtime.close()
    return 0
