"""Tests for snapshot rendering and JSON output."""

import json

from rich.console import Console

from image_studio.models import KeyUsage, SystemStatus
from image_studio.output import render_usage, snapshot_payload, write_json

ROWS = [
    KeyUsage("GEMINI_API_KEY_1", 4, True, 2, "text-to-image"),
    KeyUsage("GEMINI_API_KEY", 1, False, 0, "default"),
]
STATUS = SystemStatus(2, 1, 1, 5)


def _console():
    return Console(record=True, width=160, color_system=None)


class TestRender:
    def test_table_and_summary(self):
        console = _console()
        render_usage(ROWS, STATUS, console, {"GEMINI_API_KEY_1": "AIza...abcd"})
        text = console.export_text()
        assert "GEMINI_API_KEY_1" in text
        assert "rate limited" in text
        assert "AIza...abcd" in text
        assert "2 keys" in text and "5 requests" in text

    def test_failures_without_flag(self):
        console = _console()
        render_usage([KeyUsage("A", 0, False, 3, "unassigned")], console=console)
        assert "3 failure(s)" in console.export_text()


class TestJson:
    def test_payload_shape(self):
        payload = snapshot_payload(ROWS, STATUS)
        assert payload["system"]["availableKeys"] == 1
        assert payload["keys"][0]["keyName"] == "GEMINI_API_KEY_1"

    def test_write(self, tmp_path):
        out = tmp_path / "snapshot.json"
        assert write_json({"a": 1}, out, _console())
        assert json.loads(out.read_text()) == {"a": 1}

    def test_refuses_symlink(self, tmp_path):
        target = tmp_path / "target.json"
        target.write_text("{}")
        link = tmp_path / "snapshot.json"
        link.symlink_to(target)
        assert not write_json({"a": 1}, link, _console())
        assert target.read_text() == "{}"
