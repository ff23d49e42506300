"""Security utilities: key redaction and logging suppression.

Raw keys never reach a log line, table, or JSON payload; only slot names and
redacted fingerprints do.
"""

from __future__ import annotations

import logging
import re


def suppress_credential_logging() -> None:
    """Keep httpx/httpcore quiet: Gemini keys travel in the request URL."""
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def redact_key(key: str) -> str:
    """Fingerprint for display: first and last four characters only."""
    if len(key) <= 8:
        return "*" * len(key)
    return f"{key[:4]}...{key[-4:]}"


_KEY_PARAM = re.compile(r"([?&]key=)[^&\s]+")


def scrub_url(text: str) -> str:
    """Mask `key=` query parameters inside an error message or URL."""
    return _KEY_PARAM.sub(r"\1[REDACTED]", text)
