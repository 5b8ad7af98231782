"""
Tests for the operation log and the JSON state files underneath it.
"""

from __future__ import annotations

import csv
import io
import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from catechesis_admin.errors import NotFoundError, ValidationError
from catechesis_admin.persistence.operation_log import OperationLog
from catechesis_admin.persistence.state_file import load_json, save_json


class TestStateFile:

    def test_missing_returns_default(self, tmp_path):
        assert load_json(tmp_path / "nope.json", default={"a": 1}) == {"a": 1}

    def test_corrupt_returns_default(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("[1, 2")
        assert load_json(path, default=[]) == []

    def test_save_creates_parents_and_keeps_unicode(self, tmp_path):
        path = tmp_path / "state" / "nested" / "data.json"
        save_json({"nome": "Paróquia"}, path)
        assert "Paróquia" in path.read_text(encoding="utf-8")
        assert load_json(path) == {"nome": "Paróquia"}
        assert [p.name for p in path.parent.iterdir()] == ["data.json"]

    def test_concurrent_saves_leave_no_temp_files(self, tmp_path):
        path = tmp_path / "data.json"
        errors = []

        def write(n):
            try:
                for i in range(20):
                    save_json({"writer": n, "i": i}, path)
            except OSError as e:
                errors.append(e)

        threads = [threading.Thread(target=write, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert load_json(path)["i"] == 19
        assert [p.name for p in tmp_path.iterdir()] == ["data.json"]


class TestOperationLog:

    @pytest.fixture
    def oplog(self, tmp_path):
        return OperationLog(tmp_path / "operations.json", user="secretaria")

    def test_add(self, oplog):
        entry = oplog.log_success("config", "Configurações salvas", duration=0.81234, files=["config/settings.json"])
        assert entry["id"].startswith("log_")
        assert entry["status"] == "success"
        assert entry["duration"] == 0.812
        assert entry["user"] == "secretaria"
        assert oplog.get_logs() == [entry]

    def test_invalid_status(self, oplog):
        with pytest.raises(ValidationError):
            oplog.add("config", "bogus", "x")

    def test_newest_first_and_bounded(self, oplog):
        for i in range(OperationLog.MAX_ENTRIES + 5):
            oplog.log_info("commit", f"Commit {i}")
        logs = oplog.get_logs()
        assert len(logs) == OperationLog.MAX_ENTRIES
        assert logs[0]["message"] == f"Commit {OperationLog.MAX_ENTRIES + 4}"

    def test_filters(self, oplog):
        oplog.log_success("config", "Configurações salvas")
        oplog.log_error("upload", "Falha no envio", details={"arquivo": "logo.png"})
        oplog.log_warning("upload", "Arquivo pequeno")

        assert len(oplog.get_logs(op_type="upload")) == 2
        assert [e["message"] for e in oplog.get_logs(status="error")] == ["Falha no envio"]
        assert [e["message"] for e in oplog.get_logs(search="LOGO.PNG")] == ["Falha no envio"]
        assert len(oplog.get_logs(limit=1)) == 1

    def test_date_filters(self, oplog):
        oplog.log_info("commit", "hoje")
        today = datetime.now(timezone.utc).date()
        assert len(oplog.get_logs(date_to=today.isoformat())) == 1
        assert len(oplog.get_logs(date_from=(today + timedelta(days=1)).isoformat())) == 0
        assert len(oplog.get_logs(date_to=(today - timedelta(days=1)).isoformat())) == 0

    def test_statistics(self, oplog):
        assert oplog.get_statistics()["success_rate"] is None
        oplog.log_success("config", "a", duration=1.0)
        oplog.log_success("upload", "b", duration=2.0)
        oplog.log_error("upload", "c")
        oplog.log_info("auth", "d")

        stats = oplog.get_statistics()
        assert stats["total"] == 4
        assert stats["by_status"] == {"success": 2, "error": 1, "warning": 0, "info": 1}
        assert stats["by_type"] == {"config": 1, "upload": 2, "auth": 1}
        assert stats["last_24h"] == 4
        assert stats["average_duration"] == 1.5
        assert stats["success_rate"] == 50.0

    def test_delete(self, oplog):
        entry = oplog.log_info("auth", "Login")
        oplog.delete(entry["id"])
        assert oplog.get_logs() == []
        with pytest.raises(NotFoundError):
            oplog.delete(entry["id"])

    def test_clear(self, oplog):
        oplog.log_info("auth", "Login")
        oplog.log_info("auth", "Logout")
        assert oplog.clear() == 2
        assert oplog.get_logs() == []

    def test_concurrent_writers_keep_every_entry(self, tmp_path):
        path = tmp_path / "operations.json"
        errors = []

        def write(n):
            try:
                OperationLog(path).log_info("upload", f"arquivo {n}")
            except OSError as e:
                errors.append(e)

        threads = [threading.Thread(target=write, args=(n,)) for n in range(30)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(OperationLog(path).get_logs()) == 30

    def test_export_json(self, oplog):
        oplog.log_info("auth", "Login")
        exported = json.loads(oplog.export_json(op_type="auth"))
        assert exported[0]["message"] == "Login"

    def test_export_csv(self, oplog):
        oplog.log_success("upload", "Enviado", files=["a.png", "b.png"], duration=1.2)
        rows = list(csv.reader(io.StringIO(oplog.export_csv())))
        assert rows[0] == ["id", "timestamp", "type", "status", "message", "duration", "files", "user"]
        assert rows[1][2:] == ["upload", "success", "Enviado", "1.2", "a.png;b.png", "secretaria"]

    def test_corrupt_log_reads_as_empty(self, tmp_path):
        path = tmp_path / "operations.json"
        path.write_text(json.dumps({"not": "a list"}))
        assert OperationLog(path).get_logs() == []
