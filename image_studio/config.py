"""Process configuration: credential slots, feature map, runtime settings.

Values come from an optional .env file (python-dotenv) overlaid by the real
process environment, which always wins.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

from dotenv import dotenv_values

# Slot order is pool order: ties in least-used selection go to earlier slots.
CREDENTIAL_SLOTS: tuple[str, ...] = (
    "GEMINI_API_KEY",
    *(f"GEMINI_API_KEY_{i}" for i in range(1, 10)),
)

# Legacy names used by the browser build for the numbered slots.
_SLOT_ALIASES: Mapping[str, str] = MappingProxyType({
    f"GEMINI_API_KEY_{i}": f"NEXT_PUBLIC_GOOGLE_GEMINI_API_KEY_{i}" for i in range(1, 10)
})

FEATURE_KEY_MAP: Mapping[str, str] = MappingProxyType({
    "text-to-image": "GEMINI_API_KEY_1",
    "canvas-editor": "GEMINI_API_KEY_2",
    "style-transfer": "GEMINI_API_KEY_3",
    "templates": "GEMINI_API_KEY_4",
    "enhance-prompt": "GEMINI_API_KEY_5",
    "guided-prompt": "GEMINI_API_KEY_6",
    "photo-restore": "GEMINI_API_KEY_7",
    "default": "GEMINI_API_KEY",
})

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_PORT = 8460


def _merged_env(env_path: Optional[Path]) -> dict[str, str]:
    values: dict[str, str] = {}
    if env_path is not None and env_path.is_file():
        values.update({k: v for k, v in dotenv_values(env_path).items() if k and v is not None})
    values.update(os.environ)
    return values


def load_credentials(
    env_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """Read every credential slot. Empty slots map to ''."""
    env = dict(environ) if environ is not None else _merged_env(env_path)
    slots: dict[str, str] = {}
    for slot in CREDENTIAL_SLOTS:
        value = env.get(slot) or env.get(_SLOT_ALIASES.get(slot, ""), "")
        slots[slot] = (value or "").strip()
    return slots


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    text_model: str = "gemini-2.5-flash"
    image_model: str = "gemini-2.5-flash-image-preview"
    vision_model: str = "gemini-2.0-flash-exp"
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 60.0
    max_attempts: int = 3
    reset_interval: float = 3600.0
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    dispatch_log: Optional[Path] = None

    @classmethod
    def from_env(
        cls,
        env_path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        env = dict(environ) if environ is not None else _merged_env(env_path)
        log_path = env.get("IMAGE_STUDIO_DISPATCH_LOG")
        return cls(
            text_model=env.get("IMAGE_STUDIO_TEXT_MODEL") or cls.text_model,
            image_model=env.get("IMAGE_STUDIO_IMAGE_MODEL") or cls.image_model,
            vision_model=env.get("IMAGE_STUDIO_VISION_MODEL") or cls.vision_model,
            base_url=(env.get("IMAGE_STUDIO_BASE_URL") or cls.base_url).rstrip("/"),
            timeout=_float(env, "IMAGE_STUDIO_TIMEOUT", cls.timeout),
            max_attempts=_int(env, "IMAGE_STUDIO_MAX_ATTEMPTS", cls.max_attempts),
            reset_interval=_float(env, "IMAGE_STUDIO_RESET_INTERVAL", cls.reset_interval),
            host=env.get("IMAGE_STUDIO_HOST") or cls.host,
            port=_int(env, "IMAGE_STUDIO_PORT", cls.port),
            dispatch_log=Path(log_path) if log_path else None,
        )
