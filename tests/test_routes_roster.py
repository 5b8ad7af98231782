"""
Tests for admin roster API routes and the generic file upload routes.
"""

from __future__ import annotations

import io

import openpyxl
import pytest

pytest.importorskip("flask")

from catechesis_admin.roster.excel import DEFAULT_JSON_PATH


def upload(client, content, filename="dados.xlsx", query=""):
    return client.post(
        f"/api/roster/upload{query}",
        data={"file": (io.BytesIO(content), filename)},
        content_type="multipart/form-data",
    )


@pytest.fixture
def loaded(auth_client, workbook_bytes):
    resp = upload(auth_client, workbook_bytes)
    assert resp.status_code == 200, resp.get_json()
    return auth_client


def oplog_entries(state_dir):
    from catechesis_admin.persistence.operation_log import OperationLog

    return OperationLog(state_dir / "operations.json").get_logs()


# ── Upload ───────────────────────────────────────────────────────────


class TestUpload:

    def test_load_workbook(self, auth_client, workbook_bytes, state_dir, fake_github):
        resp = upload(auth_client, workbook_bytes)
        data = resp.get_json()
        assert data["success"] is True
        assert data["filename"] == "dados.xlsx"
        assert data["statistics"]["total_catechumens"] == 3
        assert data["warnings"] == []
        assert data["commits"] == []
        assert (state_dir / "roster.json").exists()
        assert fake_github.calls("PUT") == []

        entry = oplog_entries(state_dir)[0]
        assert entry["type"] == "upload"
        assert entry["message"] == "Planilha carregada: dados.xlsx (3 catecúmenos)"

    def test_push(self, auth_client, workbook_bytes, fake_github):
        data = upload(auth_client, workbook_bytes, query="?push=true").get_json()
        assert len(data["commits"]) == 2
        assert fake_github.files["data/dados-catequese.xlsx"][0] == workbook_bytes
        assert fake_github.json(DEFAULT_JSON_PATH)["metadata"]["total_records"] == 3

    def test_file_required(self, auth_client):
        resp = auth_client.post("/api/roster/upload", data={}, content_type="multipart/form-data")
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "file"

    def test_wrong_type(self, auth_client):
        resp = upload(auth_client, b"nome,idade\n", filename="dados.csv")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "INVALID_FILE_TYPE"

    def test_corrupt_workbook(self, auth_client, state_dir):
        resp = upload(auth_client, b"x" * 2048)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "CORRUPTED_FILE"
        assert oplog_entries(state_dir)[0]["status"] == "error"
        assert not (state_dir / "roster.json").exists()

    def test_not_loaded_yet(self, auth_client):
        resp = auth_client.get("/api/roster/statistics")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "ROSTER_NOT_LOADED"


# ── Catechumens ──────────────────────────────────────────────────────


class TestCatechumens:

    def test_statistics(self, loaded):
        data = loaded.get("/api/roster/statistics").get_json()
        assert data["source"] == "dados.xlsx"
        assert data["loaded_at"].endswith("Z")
        assert data["statistics"]["total_classes"] == 2

    @pytest.mark.parametrize("params,expected", [
        ({}, 3),
        ({"search": "ANA"}, 1),
        ({"center": "Matriz"}, 2),
        ({"stage": "2ª Etapa"}, 1),
        ({"center": "Matriz", "stage": "2ª Etapa"}, 0),
    ])
    def test_filters(self, loaded, params, expected):
        data = loaded.get("/api/roster/catechumens", query_string=params).get_json()
        assert data["count"] == expected

    def test_crud(self, loaded, state_dir):
        resp = loaded.post("/api/roster/catechumens", json={
            "name": "Daniel Reis",
            "center": "São José",
            "stage": "2ª Etapa",
            "schedule": "Domingo 8h",
        })
        assert resp.status_code == 201
        new_id = resp.get_json()["catechumen"]["id"]

        assert loaded.get(f"/api/roster/catechumens/{new_id}").get_json()["catechumen"]["name"] == "Daniel Reis"

        resp = loaded.put(f"/api/roster/catechumens/{new_id}", json={"result": "Aprovado"})
        assert resp.get_json()["catechumen"]["result"] == "Aprovado"

        assert loaded.delete(f"/api/roster/catechumens/{new_id}").get_json() == {"success": True}
        assert loaded.get("/api/roster/catechumens").get_json()["count"] == 3
        assert oplog_entries(state_dir)[0]["message"] == f"Catecúmeno removido: {new_id}"

    def test_edits_survive_reload(self, loaded):
        loaded.put("/api/roster/catechumens/cat_3", json={"result": "Aprovado"})
        report = loaded.get("/api/roster/reports/results").get_json()["report"]
        assert report["summary"] == {"Aprovado": 3}

    def test_unknown(self, loaded):
        assert loaded.get("/api/roster/catechumens/cat_99").status_code == 404
        assert loaded.delete("/api/roster/catechumens/cat_99").status_code == 404

    def test_invalid_body(self, loaded):
        assert loaded.post("/api/roster/catechumens", json={"name": " "}).status_code == 400
        assert loaded.put("/api/roster/catechumens/cat_2", json=["x"]).status_code == 400

    def test_bad_field_type_leaves_record_unchanged(self, loaded):
        before = loaded.get("/api/roster/catechumens/cat_2").get_json()["catechumen"]
        resp = loaded.put("/api/roster/catechumens/cat_2", json={"stage": "X", "additional_data": "oops"})
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "additional_data"
        assert loaded.get("/api/roster/catechumens/cat_2").get_json()["catechumen"] == before


# ── Derived views ────────────────────────────────────────────────────


class TestViews:

    def test_classes(self, loaded):
        data = loaded.get("/api/roster/classes").get_json()
        assert data["count"] == 2
        assert [c["center"] for c in data["classes"]] == ["Matriz", "São José"]

    def test_catechists(self, loaded):
        data = loaded.get("/api/roster/catechists").get_json()
        assert [c["name"] for c in data["catechists"]] == ["José", "Maria", "Pedro"]

    def test_reports(self, loaded):
        data = loaded.get("/api/roster/reports/general").get_json()
        assert data["report"]["title"] == "Relatório Geral da Catequese"
        assert loaded.get("/api/roster/reports/financeiro").status_code == 400


# ── Export / publish ─────────────────────────────────────────────────


class TestExportAndPush:

    def test_export(self, loaded):
        resp = loaded.get("/api/roster/export")
        assert resp.status_code == 200
        assert resp.mimetype.endswith("spreadsheetml.sheet")
        assert "catequese-" in resp.headers["Content-Disposition"]
        sheet = openpyxl.load_workbook(io.BytesIO(resp.data)).active
        assert sheet["A2"].value == "Ana Souza"

    def test_push(self, loaded, fake_github, state_dir):
        resp = loaded.post("/api/roster/push", json={"message": "Publicar turmas"})
        data = resp.get_json()
        assert data["path"] == DEFAULT_JSON_PATH
        assert data["commit"]["success"] is True
        assert fake_github.json(DEFAULT_JSON_PATH)["metadata"]["total_records"] == 3

        entry = oplog_entries(state_dir)[0]
        assert entry["type"] == "commit"
        assert entry["files"] == [DEFAULT_JSON_PATH]

    def test_push_failure(self, loaded, fake_github, state_dir):
        fake_github.fail_next(403, {"message": "Resource not accessible"})
        resp = loaded.post("/api/roster/push")
        assert resp.status_code == 403
        assert oplog_entries(state_dir)[0]["status"] == "error"


# ── Generic files ────────────────────────────────────────────────────


class TestFileRoutes:

    def test_kinds(self, auth_client):
        data = auth_client.get("/api/files/kinds").get_json()
        assert set(data) == {"excel", "image", "template"}
        assert data["image"]["max_size_formatted"] == "5.00 MB"

    def test_upload_image(self, auth_client, fake_github, png_bytes):
        resp = auth_client.post(
            "/api/files/upload",
            data={"file": (io.BytesIO(png_bytes), "Logo Paróquia.PNG"), "message": "Novo logo"},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        assert resp.get_json()["path"] == "assets/images/logo-par-quia.png"
        assert fake_github.files["assets/images/logo-par-quia.png"][0] == png_bytes

    def test_upload_with_kind(self, auth_client, workbook_bytes, fake_github):
        resp = auth_client.post(
            "/api/files/upload",
            data={"file": (io.BytesIO(workbook_bytes), "modelo.xlsx"), "kind": "template"},
            content_type="multipart/form-data",
        )
        assert resp.get_json()["path"] == "data/template-export.xlsx"

    def test_upload_requires_file(self, auth_client):
        resp = auth_client.post("/api/files/upload", data={}, content_type="multipart/form-data")
        assert resp.status_code == 400

    def test_upload_rejects_undecodable_image(self, auth_client, fake_github):
        resp = auth_client.post(
            "/api/files/upload",
            data={"file": (io.BytesIO(b"\x89PNG\r\n\x1a\n" + b"\x00" * 64), "logo.png")},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "CORRUPTED_FILE"
        assert fake_github.calls("PUT") == []

    def test_batch(self, auth_client, fake_github, make_image):
        resp = auth_client.post(
            "/api/files/batch",
            data={"files": [(io.BytesIO(make_image()), "a.png"), (io.BytesIO(make_image(fmt="JPEG")), "b.jpg")]},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["summary"]["success"] == 2
        assert {"assets/images/a.png", "assets/images/b.jpg"} <= set(fake_github.files)

    def test_batch_rejected_before_commit(self, auth_client, fake_github, make_image):
        resp = auth_client.post(
            "/api/files/batch",
            data={"files": [(io.BytesIO(make_image()), "a.png"), (io.BytesIO(b"nada"), "b.png")]},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Validação prévia falhou"
        assert fake_github.calls("PUT") == []

    def test_batch_requires_files(self, auth_client):
        resp = auth_client.post("/api/files/batch", data={}, content_type="multipart/form-data")
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "files"

    def test_request_too_large(self, app, auth_client):
        app.config["MAX_CONTENT_LENGTH"] = 1024
        resp = auth_client.post(
            "/api/files/upload",
            data={"file": (io.BytesIO(b"x" * 4096), "foto.png")},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 413
        assert resp.get_json()["code"] == "FILE_TOO_LARGE"
