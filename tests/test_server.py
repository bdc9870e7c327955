"""HTTP surface: validation, session resolution, status mapping, rate ceiling, roles."""
import pytest
from fastapi.testclient import TestClient

from conftest import StubResolver
from customization.engine import CustomizationEngine
from customization.intent_resolver import IntentResolver
from customization.rate_limiter import RateLimiter
from customization.session_store import InMemorySessionStore
from server import create_app

BASE = "/api/customization"
HEADERS = {"X-Session-Id": "s1"}


def _script(cmd, doc):
    if cmd.startswith("fail"):
        return None
    return {**doc, cmd.replace(" ", "_"): True}


@pytest.fixture
def client():
    engine = CustomizationEngine(InMemorySessionStore(), StubResolver(_script))
    app = create_app(engine, rate_limiter=RateLimiter(1000), write_role=None)
    return TestClient(app)


def test_command_applies_and_shows_in_history(client) -> None:
    resp = client.post(f"{BASE}/command", json={"command": "add field X", "document": {}}, headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["updatedDocument"] == {"add_field_X": True}
    assert set(body["actionSummary"]) == {"en", "ar"}

    history = client.get(f"{BASE}/history", headers=HEADERS).json()["history"]
    assert len(history) == 1
    assert history[0]["command"] == "add field X"


def test_command_accepts_architecture_key(client) -> None:
    resp = client.post(f"{BASE}/command", json={"command": "grow", "architecture": {"a": 1}}, headers=HEADERS)
    assert resp.json()["updatedDocument"] == {"a": 1, "grow": True}


def test_failed_command_is_200_with_explanation(client) -> None:
    resp = client.post(f"{BASE}/command", json={"command": "fail please", "document": {"a": 1}}, headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["explanation"]["ar"]
    assert client.get(f"{BASE}/history", headers=HEADERS).json()["history"] == []


@pytest.mark.parametrize(
    "payload",
    [
        {"document": {}},
        {"command": 42, "document": {}},
        {"command": "   ", "document": {}},
        {"command": "x", "document": [1, 2]},
    ],
)
def test_command_validation_errors_are_400(client, payload) -> None:
    resp = client.post(f"{BASE}/command", json=payload, headers=HEADERS)
    assert resp.status_code == 400
    assert set(resp.json()["detail"]["explanation"]) == {"en", "ar"}


def test_missing_session_header_is_401(client) -> None:
    resp = client.post(f"{BASE}/command", json={"command": "x", "document": {}})
    assert resp.status_code == 401


def test_undo_round_trip_and_empty_history_404(client) -> None:
    client.post(f"{BASE}/command", json={"command": "add", "document": {"base": 1}}, headers=HEADERS)

    resp = client.post(f"{BASE}/undo", headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["undone"]["command"] == "add"
    assert body["currentDocument"] == {"base": 1}

    resp = client.post(f"{BASE}/undo", headers=HEADERS)
    assert resp.status_code == 404
    assert resp.json()["detail"]["nothingToUndo"] is True


def test_batch_runs_in_order(client) -> None:
    resp = client.post(
        f"{BASE}/batch",
        json={"commands": ["one", "fail two", "three"], "document": {}},
        headers=HEADERS,
    )
    assert resp.status_code == 200
    results = resp.json()["results"]
    assert [r["success"] for r in results] == [True, False, True]
    assert results[2]["updatedDocument"] == {"one": True, "three": True}


@pytest.mark.parametrize("payload", [{"document": {}}, {"commands": [], "document": {}}, {"commands": ["a", 3]}])
def test_batch_validation_errors_are_400(client, payload) -> None:
    assert client.post(f"{BASE}/batch", json=payload, headers=HEADERS).status_code == 400


def test_deep_modify_accepts_type_alias(client) -> None:
    resp = client.post(
        f"{BASE}/deep-modify",
        json={"modification": {"type": "optimize"}, "document": {}},
        headers=HEADERS,
    )
    assert resp.status_code == 200
    assert resp.json()["success"] is True


@pytest.mark.parametrize("modification", [{}, {"kind": "teleport"}])
def test_deep_modify_bad_kind_is_400(client, modification) -> None:
    resp = client.post(f"{BASE}/deep-modify", json={"modification": modification, "document": {}}, headers=HEADERS)
    assert resp.status_code == 400


def test_suggestions_fall_back_when_resolver_is_offline(client) -> None:
    resp = client.post(f"{BASE}/suggestions", json={"document": {}}, headers=HEADERS)
    assert resp.status_code == 200
    ids = [s["id"] for s in resp.json()["suggestions"]]
    assert ids == ["fallback-timestamps", "fallback-soft-delete", "fallback-audit-log"]


def test_document_endpoint_404_for_unknown_session(client) -> None:
    assert client.get(f"{BASE}/document", headers={"X-Session-Id": "nobody"}).status_code == 404
    client.post(f"{BASE}/command", json={"command": "x", "document": {}}, headers=HEADERS)
    assert client.get(f"{BASE}/document", headers=HEADERS).json() == {"currentDocument": {"x": True}}


def test_sessions_are_isolated_over_http(client) -> None:
    client.post(f"{BASE}/command", json={"command": "a", "document": {}}, headers={"X-Session-Id": "A"})
    assert client.get(f"{BASE}/history", headers={"X-Session-Id": "B"}).json() == {"history": []}


def test_rate_limit_returns_429() -> None:
    engine = CustomizationEngine(InMemorySessionStore(), StubResolver(_script))
    client = TestClient(create_app(engine, rate_limiter=RateLimiter(2), write_role=None))

    codes = [client.get(f"{BASE}/history", headers=HEADERS).status_code for _ in range(3)]
    assert codes == [200, 200, 429]
    # another caller on the same session has its own budget
    other = client.get(f"{BASE}/history", headers={**HEADERS, "X-Caller-Id": "someone-else"})
    assert other.status_code == 200


def test_write_role_guards_write_endpoints() -> None:
    engine = CustomizationEngine(InMemorySessionStore(), StubResolver(_script))
    client = TestClient(create_app(engine, rate_limiter=RateLimiter(1000), write_role="owner"))

    denied = client.post(f"{BASE}/command", json={"command": "x", "document": {}}, headers=HEADERS)
    assert denied.status_code == 403
    allowed = client.post(
        f"{BASE}/command",
        json={"command": "x", "document": {}},
        headers={**HEADERS, "X-Caller-Role": "owner"},
    )
    assert allowed.status_code == 200
    # reads stay open
    assert client.get(f"{BASE}/history", headers=HEADERS).status_code == 200


def test_health() -> None:
    client = TestClient(create_app(CustomizationEngine(InMemorySessionStore(), StubResolver())))
    assert client.get("/health").json() == {"status": "ok", "tokenUsage": {}}


def test_health_reports_resolver_token_usage() -> None:
    class Metered:
        def get_accrued_usage(self):
            return {"prompt_token_count": 12, "candidates_token_count": 3}

    resolver = IntentResolver(Metered(), Metered())
    client = TestClient(create_app(CustomizationEngine(InMemorySessionStore(), resolver)))
    assert client.get("/health").json()["tokenUsage"] == {"prompt_token_count": 24, "candidates_token_count": 6}
