from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

import notememory.main as main_mod
from notememory.errors import ConfigError
from notememory.retrieval.memory import NoteMemory


@pytest.fixture
def client(tmp_path, monkeypatch, embedder):
    monkeypatch.setattr(
        main_mod,
        "build_memory",
        lambda: NoteMemory(tmp_path / "api.db", embedder, model="fake-model"),
        raising=True,
    )
    with TestClient(main_mod.app) as c:
        yield c


def test_index_and_search(client):
    resp = client.put("/notes/py", json={"content": "python python", "metadata": {"tag": "code"}})
    assert resp.status_code == 200
    data = resp.json()
    assert data["ok"] is True
    assert data["note_id"] == "py"
    assert "request_id" in data

    client.put("/notes/garden", json={"content": "garden beds"})

    resp = client.post("/search", json={"query": "python", "limit": 3})
    assert resp.status_code == 200
    data = resp.json()
    assert data["ok"] is True
    assert [h["note_id"] for h in data["hits"]] == ["py"]
    assert data["hits"][0]["metadata"] == {"tag": "code"}


def test_remove_and_count(client):
    client.put("/notes/a", json={"content": "python"})
    client.put("/notes/b", json={"content": "garden"})

    resp = client.delete("/notes/a")
    assert resp.json()["removed"] is True
    assert client.delete("/notes/a").json()["removed"] is False

    assert client.get("/").json() == {"ok": True, "notes": 1}


def test_clear(client):
    client.put("/notes/a", json={"content": "python"})

    resp = client.post("/clear")

    assert resp.status_code == 200
    assert "note" in resp.json()["dropped"]
    assert client.get("/").json()["notes"] == 0


def test_reindex(client):
    resp = client.post(
        "/reindex",
        json={
            "notes": [
                {"id": "a", "content": "python code"},
                {"id": "b", "content": ""},
            ]
        },
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["ok"] is True
    assert data["indexed_notes"] == 1
    assert data["skipped_notes"] == 1
    assert data["success_rate"] == 50.0


def test_embedding_failure_is_503(client, embedder):
    embedder.fail = True

    resp = client.put("/notes/a", json={"content": "python"})

    assert resp.status_code == 503
    data = resp.json()
    assert data["ok"] is False
    assert "EmbeddingError" in data["error"]


def test_invalid_body_is_422(client):
    assert client.put("/notes/a", json={}).status_code == 422

    resp = client.post("/search", json={"query": ""})
    assert resp.status_code == 422
    assert resp.json()["ok"] is False


def test_memory_unavailable_is_503(monkeypatch):
    def broken():
        raise ConfigError("an API key is required for the remote provider")

    monkeypatch.setattr(main_mod, "build_memory", broken, raising=True)

    with TestClient(main_mod.app) as c:
        resp = c.post("/search", json={"query": "python"})
        assert resp.status_code == 503
        assert "API key" in resp.json()["error"]
        assert c.get("/").json() == {"ok": False, "notes": None}


def test_reindex_rejects_blank_ids(client):
    resp = client.post("/reindex", json={"notes": [{"id": "   ", "content": "python"}]})

    assert resp.status_code == 422
    assert resp.json()["ok"] is False
