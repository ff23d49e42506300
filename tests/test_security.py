"""Tests for key redaction."""

import logging

from image_studio.security import redact_key, scrub_url, suppress_credential_logging


class TestRedact:
    def test_partial(self):
        assert redact_key("AIzaSyABCDEFGH12345678") == "AIza...5678"

    def test_short_key_fully_masked(self):
        assert redact_key("abc") == "***"
        assert redact_key("12345678") == "********"


class TestScrub:
    def test_query_param(self):
        url = "https://x/v1beta/models/m:generateContent?key=AIzaSECRET&alt=json"
        assert scrub_url(url) == "https://x/v1beta/models/m:generateContent?key=[REDACTED]&alt=json"

    def test_other_params_untouched(self):
        assert scrub_url("https://x/?monkey=1") == "https://x/?monkey=1"


def test_suppress_credential_logging():
    suppress_credential_logging()
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING
