import threading

import pytest
from fastapi.testclient import TestClient

from rhombus.api.deps import get_workbench
from rhombus.config import Settings
from rhombus.main import app
from rhombus.models.document import Range
from rhombus.models.symbols import Location, WorkspaceSymbol
from rhombus.services.workbench import Workbench

from conftest import write_file

JOBS_PY = "# @ai: add logging\nx = 1\n"


@pytest.fixture
def workbench(tmp_path, oracle):
    settings = Settings(WORKSPACE_ROOT=str(tmp_path), WATCH_FILES=False, INDEX_ON_STARTUP=False)
    workbench = Workbench.create(settings, oracle)
    yield workbench
    workbench.shutdown()


@pytest.fixture
def client(workbench):
    app.dependency_overrides[get_workbench] = lambda: workbench
    yield TestClient(app)
    app.dependency_overrides.clear()


# ─────────────────────────────────────────────────────────────────────────────
# REST
# ─────────────────────────────────────────────────────────────────────────────

def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/").json()["project"] == "Rhombus"


def test_open_document_returns_its_directives(client):
    response = client.post("/api/documents/open", json={"path": "/w/jobs.py", "text": JOBS_PY})

    assert response.status_code == 200
    body = response.json()
    assert body["version"] == 1
    assert [d["text"] for d in body["directives"]] == ["add logging"]
    assert body["directives"][0]["range"]["start"] == {"line": 1, "character": 0}


def test_change_bumps_version_and_rescans(client):
    client.post("/api/documents/open", json={"path": "/w/jobs.py", "text": JOBS_PY})

    body = client.post("/api/documents/change", json={"path": "/w/jobs.py", "text": "# @ai: rename x\n"}).json()

    assert body["version"] == 2
    assert [d["text"] for d in body["directives"]] == ["rename x"]


def test_save_of_unknown_document_is_404(client):
    response = client.post("/api/documents/save", json={"path": "/w/never-opened.py"})
    assert response.status_code == 404


def test_close_keeps_directives(client):
    client.post("/api/documents/open", json={"path": "/w/jobs.py", "text": JOBS_PY})

    assert client.post("/api/documents/close", json={"path": "/w/jobs.py"}).json() == {"path": "/w/jobs.py", "closed": True}
    assert [d["text"] for d in client.get("/api/directives", params={"path": "/w/jobs.py"}).json()] == ["add logging"]


def test_get_directive_by_id(client):
    text = '// @ai prompt="add retries" id="retry-1"\nfetchAll();\n'
    client.post("/api/documents/open", json={"path": "/w/svc.ts", "text": text})

    found = client.get("/api/directives/retry-1", params={"path": "/w/svc.ts"})
    missing = client.get("/api/directives/nope", params={"path": "/w/svc.ts"})

    assert found.json()["text"] == "add retries"
    assert missing.status_code == 404


def test_selection_reports_directives_in_range(client):
    client.post("/api/documents/open", json={"path": "/w/jobs.py", "text": JOBS_PY})
    selection = {"start": {"line": 1, "character": 0}, "end": {"line": 1, "character": 3}}

    body = client.post("/api/editor/selection", json={"path": "/w/jobs.py", "selection": selection}).json()

    assert body["directives"] == ["add logging"]
    assert body["selection"] == selection


def test_collect_context_for_target_file(tmp_path, client):
    path = write_file(tmp_path, "app.py", "def run():\n    return 1\n")

    body = client.post("/api/context", json={"intent": "explain run", "target_file": path}).json()

    assert body["context"]["items"][0]["type"] == "current"
    assert body["context"]["items"][0]["file"] == path
    assert body["prompt"].startswith("## Request\nexplain run")
    assert "[CURRENT]" in body["prompt"]


def test_history_round_trip(client):
    client.post("/api/history", json={"request": "one", "response": "ok", "files_modified": ["/a.ts", "/a.ts"]})
    client.post("/api/history", json={"request": "two", "response": "ok"})

    everything = client.get("/api/history").json()
    latest = client.get("/api/history", params={"limit": 1}).json()

    assert [t["request"] for t in everything] == ["one", "two"]
    assert everything[0]["files_modified"] == ["/a.ts"]
    assert [t["request"] for t in latest] == ["two"]


def test_apply_reply_updates_open_buffer(client, workbench):
    client.post("/api/documents/open", json={"path": "/w/a.ts", "text": "a\nb\nc\n"})

    body = client.post("/api/documents/apply-reply", json={
        "path": "/w/a.ts",
        "reply": "Try this:\n```ts\nB\n```",
        "start_line": 1,
        "end_line": 2,
    }).json()

    assert body["applied"]
    assert body["text"] == "a\nB\nc\n"
    assert workbench.registry.get("/w/a.ts").text == "a\nB\nc\n"


def test_apply_reply_to_missing_file_is_404(tmp_path, client):
    response = client.post("/api/documents/apply-reply", json={
        "path": str(tmp_path / "missing.ts"),
        "reply": "x",
        "start_line": 0,
        "end_line": 1,
    })
    assert response.status_code == 404


def test_symbol_search_uses_the_oracle(client, oracle):
    oracle.workspace = [WorkspaceSymbol("UserService", "class", Location("/w/user.ts", Range.of(2, 0, 9, 1)))]

    hits = client.get("/api/symbols/search", params={"q": "user"}).json()

    assert hits == [{
        "name": "UserService",
        "file": "/w/user.ts",
        "range": {"start": {"line": 2, "character": 0}, "end": {"line": 9, "character": 1}},
        "kind": "definition",
    }]


def test_status_and_cache_clear(tmp_path, client):
    client.post("/api/documents/open", json={"path": "/w/jobs.py", "text": JOBS_PY})

    status = client.get("/api/status").json()

    assert status["directive_files"] == ["/w/jobs.py"]
    assert status["documents"]["total_documents"] == 1
    assert status["symbol_index"] is None
    assert client.post("/api/cache/clear").json() == {"status": "cleared"}


# ─────────────────────────────────────────────────────────────────────────────
# Startup
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_startup_indexes_the_workspace_off_the_event_loop(tmp_path, monkeypatch):
    path = write_file(tmp_path, "src/jobs.py", "def run():\n    pass\n")
    settings = Settings(WORKSPACE_ROOT=str(tmp_path), WATCH_FILES=False, INDEX_ON_STARTUP=True)
    workbench = Workbench.create(settings)
    threads = []
    index_project = workbench.oracle.index_project

    def recording_index_project(*args):
        threads.append(threading.get_ident())
        return index_project(*args)

    monkeypatch.setattr(workbench.oracle, "index_project", recording_index_project)

    await workbench.start()
    workbench.shutdown()

    assert path in workbench.oracle.index.by_file
    assert threads and threads[0] != threading.get_ident()


# ─────────────────────────────────────────────────────────────────────────────
# Websocket
# ─────────────────────────────────────────────────────────────────────────────

def test_ws_greets_and_answers_ping(client):
    with client.websocket_connect("/ws/editor") as ws:
        assert ws.receive_json()["type"] == "connected"
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_ws_pushes_directive_updates_after_open(client):
    with client.websocket_connect("/ws/editor") as ws:
        ws.receive_json()
        ws.send_json({"type": "openDocument", "path": "/w/jobs.py", "text": JOBS_PY})

        update = ws.receive_json()

        assert update["type"] == "directivesUpdated"
        assert update["path"] == "/w/jobs.py"
        assert [d["text"] for d in update["directives"]] == ["add logging"]


def test_ws_rejects_invalid_messages(client):
    with client.websocket_connect("/ws/editor") as ws:
        ws.receive_json()

        ws.send_text('{"type": "bogus"}')
        unknown = ws.receive_json()
        ws.send_text("not json")
        garbled = ws.receive_json()

        assert unknown["type"] == "error"
        assert unknown["message"].startswith("Invalid message:")
        assert garbled["type"] == "error"


def test_ws_unknown_directive_is_an_error(client):
    with client.websocket_connect("/ws/editor") as ws:
        ws.receive_json()
        ws.send_json({"type": "getDirective", "path": "/w/jobs.py", "id": "nope"})

        reply = ws.receive_json()

        assert reply["type"] == "error"
        assert "nope" in reply["message"]


def test_ws_selection_and_close_reply_with_directive_lists(client):
    with client.websocket_connect("/ws/editor") as ws:
        ws.receive_json()
        ws.send_json({"type": "openDocument", "path": "/w/jobs.py", "text": JOBS_PY})
        ws.receive_json()

        ws.send_json({
            "type": "setSelection",
            "path": "/w/jobs.py",
            "selection": {"start": {"line": 0, "character": 0}, "end": {"line": 0, "character": 0}},
        })
        outside = ws.receive_json()
        ws.send_json({"type": "closeDocument", "path": "/w/jobs.py"})
        closed = ws.receive_json()

        assert outside == {"type": "directiveList", "path": "/w/jobs.py", "directives": []}
        assert closed["type"] == "directiveList"
        assert [d["text"] for d in closed["directives"]] == ["add logging"]


def test_ws_collect_context_and_record_turn(tmp_path, client):
    path = write_file(tmp_path, "app.py", "def run():\n    return 1\n")

    with client.websocket_connect("/ws/editor") as ws:
        ws.receive_json()
        ws.send_json({"type": "collectContext", "intent": "explain", "target_file": path})
        assembled = ws.receive_json()
        ws.send_json({"type": "recordTurn", "request": "explain", "response": "it returns 1"})
        recorded = ws.receive_json()

    assert assembled["type"] == "contextAssembled"
    assert assembled["context"]["items"][0]["file"] == path
    assert recorded["type"] == "turnRecorded"
    assert recorded["history_size"] == 1


def test_ws_apply_reply_to_file_on_disk(tmp_path, client):
    path = write_file(tmp_path, "a.ts", "a\nb\nc\n")

    with client.websocket_connect("/ws/editor") as ws:
        ws.receive_json()
        ws.send_json({"type": "applyReply", "path": path, "reply": "```\nB\n```", "start_line": 1, "end_line": 2})
        edit = ws.receive_json()

    assert edit["type"] == "editApplied"
    assert edit["text"] == "a\nB\nc\n"
    assert edit["code"] == "B"
