"""Tests for the dispatch record log."""

import json

from image_studio.dispatch_log import DispatchLog, DispatchRecord


def _record():
    record = DispatchRecord("text-to-image")
    record.add("GEMINI_API_KEY_1", "rate_limited", 12.3456)
    record.add("GEMINI_API_KEY", "success", 80.0)
    record.finish("success")
    return record


class TestDispatchRecord:
    def test_to_dict(self):
        data = _record().to_dict()
        assert data == {
            "feature": "text-to-image",
            "outcome": "success",
            "attempts": [
                {"keyName": "GEMINI_API_KEY_1", "outcome": "rate_limited", "latencyMs": 12.35},
                {"keyName": "GEMINI_API_KEY", "outcome": "success", "latencyMs": 80.0},
            ],
        }

    def test_error_is_type_name_only(self):
        record = DispatchRecord("default")
        record.finish("fatal", ValueError("key=AIzaSECRET rejected"))
        assert record.to_dict()["error"] == "ValueError"
        assert "AIzaSECRET" not in json.dumps(record.to_dict())


class TestDispatchLog:
    def test_one_line_per_record(self, tmp_path):
        path = tmp_path / "logs" / "dispatch.log"
        log = DispatchLog(path)
        log.write(_record())
        log.health_reset("GEMINI_API_KEY_1")
        first, second = [json.loads(line) for line in path.read_text().splitlines()]
        assert first["type"] == "dispatch"
        assert len(first["attempts"]) == 2
        assert second == {"ts": second["ts"], "type": "reset", "keyName": "GEMINI_API_KEY_1"}

    def test_no_path_writes_nothing(self, tmp_path):
        DispatchLog().write(_record())
        assert list(tmp_path.iterdir()) == []

    def test_directory_path_is_tolerated(self, tmp_path):
        log = DispatchLog(tmp_path)
        log.write(_record())
        assert list(tmp_path.iterdir()) == []

    def test_refuses_symlink(self, tmp_path):
        target = tmp_path / "target.log"
        target.write_text("")
        link = tmp_path / "dispatch.log"
        link.symlink_to(target)
        DispatchLog(link).write(_record())
        assert target.read_text() == ""

    def test_rotates_when_full(self, tmp_path):
        path = tmp_path / "dispatch.log"
        path.write_text("x" * 100)
        DispatchLog(path, rotate_at=50).write(_record())
        assert (tmp_path / "dispatch.log.1").read_text() == "x" * 100
        assert json.loads(path.read_text())["outcome"] == "success"
