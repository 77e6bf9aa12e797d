import asyncio
import json
import logging

import httpx
from fastapi.testclient import TestClient


def _envelope(api_key_id, **overrides):
    payload = {
        "service": "openai",
        "path": "/models",
        "method": "GET",
        "apiKeyId": api_key_id,
    }
    payload.update(overrides)
    return payload


def _usage(client, auth, principal_id):
    r = client.get("/api/usage", headers=auth(principal_id))
    assert r.status_code == 200, r.text
    return r.json()


def test_proxy_mirrors_upstream_status_and_body(client, auth, register, upstream):
    key_id = register("alice")

    r = client.post("/api/mcp", json=_envelope(key_id), headers=auth("alice"))

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == 200
    assert body["data"] == {"object": "list", "data": [{"id": "gpt-4o"}]}
    assert body["headers"]["x-request-id"] == "req-1"

    assert len(upstream.requests) == 1
    sent = upstream.requests[0]
    assert sent.method == "GET"
    assert str(sent.url) == "https://api.openai.com/models"
    assert sent.headers["Authorization"] == "Bearer sk-live-123"
    assert sent.content == b""


def test_relative_path_appends_to_base_path(client, auth, register, upstream):
    key_id = register("alice")
    r = client.post(
        "/api/mcp", json=_envelope(key_id, path="models?limit=2"), headers=auth("alice")
    )
    assert r.status_code == 200, r.text
    assert str(upstream.requests[0].url) == "https://api.openai.com/v1/models?limit=2"


def test_upstream_error_status_passes_through(client, auth, register, upstream):
    key_id = register("alice")
    upstream.status_code = 429
    upstream.json = {"error": {"message": "rate limited"}}

    r = client.post("/api/mcp", json=_envelope(key_id), headers=auth("alice"))

    assert r.status_code == 429
    assert r.json()["status"] == 429
    assert r.json()["data"] == {"error": {"message": "rate limited"}}


def test_credential_of_another_principal_is_not_found(client, auth, register, upstream):
    key_id = register("alice")

    r = client.post("/api/mcp", json=_envelope(key_id), headers=auth("bob"))

    assert r.status_code == 404
    assert r.json() == {"error": "API key not found or access denied"}
    assert "sk-live-123" not in r.text
    assert upstream.requests == []
    assert _usage(client, auth, "alice") == []
    assert _usage(client, auth, "bob") == []


def test_unknown_credential_looks_the_same_as_foreign_one(client, auth, register):
    register("alice")
    r = client.post("/api/mcp", json=_envelope("does-not-exist"), headers=auth("bob"))
    assert r.status_code == 404
    assert r.json() == {"error": "API key not found or access denied"}


def test_credential_for_other_service_is_rejected(client, auth, register, upstream):
    key_id = register("alice", service="openai")

    for service in ("github", "no-such-service"):
        r = client.post(
            "/api/mcp", json=_envelope(key_id, service=service), headers=auth("alice")
        )
        assert r.status_code == 400, service
        assert r.json() == {"error": "API key does not match requested service"}

    assert upstream.requests == []


def test_missing_authorization_rejected_before_store_access(client, upstream):
    gateway = client.app.state.gateway

    async def _no_store(*args, **kwargs):
        raise AssertionError("credential store must not be touched")

    gateway.credentials.fetch = _no_store

    r = client.post("/api/mcp", json=_envelope("k1"))

    assert r.status_code == 401
    assert r.json() == {"error": "Missing or invalid authorization header"}
    assert upstream.requests == []


def test_malformed_or_invalid_token_rejected(client):
    for header in ("Basic dXNlcjpwYXNz", "Bearer", "Bearer not-a-jwt"):
        r = client.post(
            "/api/mcp", json=_envelope("k1"), headers={"Authorization": header}
        )
        assert r.status_code == 401, header
        assert "error" in r.json()


def test_missing_method_is_listed(client, auth):
    payload = _envelope("k1")
    del payload["method"]

    r = client.post("/api/mcp", json=payload, headers=auth("alice"))

    assert r.status_code == 400
    error = r.json()["error"]
    assert "method" in error
    assert "service" not in error


def test_all_missing_fields_enumerated(client, auth):
    r = client.post("/api/mcp", headers=auth("alice"))
    assert r.status_code == 400
    assert r.json()["error"] == "Missing required fields: service, path, method, apiKeyId"

    r = client.post(
        "/api/mcp",
        json={"service": " ", "path": "/x", "method": "GET", "apiKeyId": ""},
        headers=auth("alice"),
    )
    assert r.json()["error"] == "Missing required fields: service, apiKeyId"


def test_non_json_body_rejected(client, auth):
    headers = {**auth("alice"), "Content-Type": "application/json"}
    r = client.post("/api/mcp", content=b"{not json", headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Request body must be valid JSON"

    r = client.post("/api/mcp", json=["a", "list"], headers=auth("alice"))
    assert r.status_code == 400


def test_forged_auth_header_is_replaced(client, auth, register, upstream):
    key_id = register("alice")
    payload = _envelope(
        key_id,
        headers={"authorization": "Bearer forged", "X-Trace": "abc"},
    )

    r = client.post("/api/mcp", json=payload, headers=auth("alice"))

    assert r.status_code == 200, r.text
    sent = upstream.requests[0]
    assert sent.headers.get_list("authorization") == ["Bearer sk-live-123"]
    assert sent.headers["x-trace"] == "abc"


def test_service_specific_auth_header(client, auth, register, upstream):
    key_id = register("alice", service="github", api_key="ghp_abc")
    upstream.json = [{"id": 1}]

    r = client.post(
        "/api/mcp",
        json=_envelope(key_id, service="github", path="/user/repos"),
        headers=auth("alice"),
    )

    assert r.status_code == 200, r.text
    assert r.json()["data"] == [{"id": 1}]
    sent = upstream.requests[0]
    assert sent.headers["X-GitHub-Token"] == "Bearer ghp_abc"
    assert "authorization" not in sent.headers
    assert str(sent.url) == "https://api.github.com/user/repos"


def test_body_is_sent_as_json(client, auth, register, upstream):
    key_id = register("alice")
    upstream.status_code = 201
    upstream.json = {"id": "chatcmpl-1"}

    r = client.post(
        "/api/mcp",
        json=_envelope(
            key_id,
            path="chat/completions",
            method="post",
            headers={"Content-Type": "text/plain"},
            body={"model": "gpt-4o", "messages": []},
        ),
        headers=auth("alice"),
    )

    assert r.status_code == 201, r.text
    sent = upstream.requests[0]
    assert sent.method == "POST"
    assert sent.headers.get_list("content-type") == ["application/json"]
    assert json.loads(sent.content) == {"model": "gpt-4o", "messages": []}


def test_unlisted_verb_is_forwarded(client, auth, register, upstream):
    key_id = register("alice")
    r = client.post(
        "/api/mcp", json=_envelope(key_id, method="purge"), headers=auth("alice")
    )
    assert r.status_code == 200, r.text
    assert upstream.requests[0].method == "PURGE"


def test_transport_failure_returns_500_and_is_recorded(client, auth, register, upstream):
    key_id = register("alice")
    upstream.error = httpx.ConnectError("connection refused")

    r = client.post("/api/mcp", json=_envelope(key_id), headers=auth("alice"))

    assert r.status_code == 500
    body = r.json()
    assert body["error"] == "MCP request failed"
    assert "ConnectError" in body["details"]

    rows = _usage(client, auth, "alice")
    assert len(rows) == 1
    assert rows[0]["status_code"] is None


def test_non_json_upstream_body_is_a_transport_failure(client, auth, register, upstream):
    key_id = register("alice")
    upstream.content = b"<html>oops</html>"

    r = client.post("/api/mcp", json=_envelope(key_id), headers=auth("alice"))

    assert r.status_code == 500
    assert r.json()["error"] == "MCP request failed"
    assert _usage(client, auth, "alice")[0]["status_code"] == 200


def test_no_content_upstream_passes_status_only(client, auth, register, upstream):
    key_id = register("alice")
    upstream.status_code = 204
    upstream.json = None

    r = client.post(
        "/api/mcp", json=_envelope(key_id, method="DELETE"), headers=auth("alice")
    )

    assert r.status_code == 204
    assert r.content == b""


def test_usage_rows_are_appended_per_call(client, auth, register):
    key_id = register("alice")
    for _ in range(3):
        r = client.post(
            "/api/mcp",
            json=_envelope(key_id, headers={"Authorization": "Bearer forged", "X-Trace": "t"}),
            headers=auth("alice"),
        )
        assert r.status_code == 200, r.text

    rows = _usage(client, auth, "alice")
    assert len(rows) == 3
    for row in rows:
        assert row["api_key_id"] == key_id
        assert row["service"] == "openai"
        assert row["method"] == "GET"
        assert row["status_code"] == 200
        assert row["duration"] >= 0
        assert row["request_headers"] == {"X-Trace": "t"}
        assert row["response_headers"]["x-request-id"] == "req-1"


def test_usage_write_failure_does_not_change_response(client, auth, register):
    key_id = register("alice")

    async def _broken(row):
        raise RuntimeError("database is locked")

    client.app.state.gateway.usage_recorder.store.append = _broken

    r = client.post("/api/mcp", json=_envelope(key_id), headers=auth("alice"))

    assert r.status_code == 200, r.text
    assert r.json()["data"]["object"] == "list"


def test_unwrap_failure_is_generic_500(client, auth, register, upstream, key_service):
    key_id = register("alice")
    key_service.deny_decrypt = True

    r = client.post("/api/mcp", json=_envelope(key_id), headers=auth("alice"))

    assert r.status_code == 500
    assert r.json() == {
        "error": "Failed to decrypt credential",
        "details": "permission_denied",
    }
    assert upstream.requests == []
    assert _usage(client, auth, "alice") == []


def test_plaintext_never_logged_or_audited(client, auth, register, caplog):
    caplog.set_level(logging.INFO)
    key_id = register("alice", api_key="sk-very-secret-value")

    client.post("/api/mcp", json=_envelope(key_id), headers=auth("alice"))
    client.post("/api/mcp", json=_envelope(key_id, service="github"), headers=auth("alice"))
    client.post("/api/mcp", json=_envelope(key_id), headers=auth("mallory"))

    assert "sk-very-secret-value" not in caplog.text

    events = asyncio.run(client.app.state.audit.list_events(limit=50))
    assert "sk-very-secret-value" not in json.dumps(events)
    assert any(e["type"] == "gateway_rejected" for e in events["items"])


def test_missing_service_definition_is_not_found(client, auth, register, upstream):
    key_id = register("alice")

    async def _no_definition(name):
        return None

    client.app.state.gateway.services.fetch = _no_definition

    r = client.post("/api/mcp", json=_envelope(key_id), headers=auth("alice"))

    assert r.status_code == 404
    assert r.json() == {"error": "Service configuration not found"}
    assert upstream.requests == []
    assert _usage(client, auth, "alice") == []


def test_store_failure_during_lookup_is_json_500(client, auth, upstream):
    async def _db_down(*args, **kwargs):
        raise RuntimeError("db down")

    client.app.state.gateway.credentials.fetch = _db_down

    r = client.post("/api/mcp", json=_envelope("k1"), headers=auth("alice"))

    assert r.status_code == 500
    assert r.headers["content-type"].startswith("application/json")
    assert r.json() == {"error": "MCP request failed", "details": "RuntimeError"}
    assert "db down" not in r.text
    assert upstream.requests == []


def test_non_ascii_header_value_is_json_500(client, auth, register, upstream):
    key_id = register("alice")

    r = client.post(
        "/api/mcp",
        json=_envelope(key_id, headers={"X-Name": "café"}),
        headers=auth("alice"),
    )

    assert r.status_code == 500
    assert r.headers["content-type"].startswith("application/json")
    assert r.json()["error"] == "MCP request failed"
    assert upstream.requests == []

    rows = _usage(client, auth, "alice")
    assert len(rows) == 1
    assert rows[0]["status_code"] is None


def test_unparseable_path_is_json_500(client, auth, register, upstream):
    key_id = register("alice")

    r = client.post(
        "/api/mcp", json=_envelope(key_id, path="http://[::1"), headers=auth("alice")
    )

    assert r.status_code == 500
    assert r.headers["content-type"].startswith("application/json")
    assert r.json()["error"] == "MCP request failed"
    assert "sk-live-123" not in r.text
    assert upstream.requests == []


def test_unhandled_route_error_is_json_500(client, auth):
    async def _broken(*args, **kwargs):
        raise RuntimeError("connection reset")

    client.app.state.credentials.credentials.list_for_owner = _broken
    lenient = TestClient(client.app, raise_server_exceptions=False)

    r = lenient.get("/api/credentials", headers=auth("alice"))

    assert r.status_code == 500
    assert r.json() == {"error": "MCP request failed"}
