import asyncio

import httpx
import pytest

from intune_compliance_report.graph.client import GraphAPIError, GraphAuthorizationError, GraphClient
from intune_compliance_report.safety.guardian import SafetyGuardian, SafetyViolation

BASE = "https://graph.microsoft.com/v1.0"


def make_client(handler, **kwargs):
    kwargs.setdefault("initial_backoff", 0)
    return GraphClient(
        access_token="token",
        guardian=SafetyGuardian(),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def run_with(client, fn):
    async def go():
        async with client:
            return await fn(client)
    return asyncio.run(go())


def test_build_url_versions():
    client = GraphClient(access_token="t", guardian=SafetyGuardian())
    assert client._build_url("/deviceManagement/managedDevices") == f"{BASE}/deviceManagement/managedDevices"
    assert client._build_url("deviceManagement", beta=True) == "https://graph.microsoft.com/beta/deviceManagement"
    assert client._build_url("https://example.test/x") == "https://example.test/x"


def test_get_all_pages_follows_next_link():
    seen = []

    def handler(request):
        seen.append(request.url)
        if "skiptoken" in str(request.url):
            return httpx.Response(200, json={"value": [{"id": "3"}]})
        return httpx.Response(200, json={
            "value": [{"id": "1"}, {"id": "2"}],
            "@odata.nextLink": f"{BASE}/deviceManagement/managedDevices?$skiptoken=abc",
        })

    client = make_client(handler)
    items = run_with(client, lambda c: c.get_all_pages("deviceManagement/managedDevices"))

    assert [i["id"] for i in items] == ["1", "2", "3"]
    assert seen[0].params["$top"] == "999"
    assert "$top" not in seen[1].params
    assert client.get_stats()["total_requests"] == 2


def test_skip_top_omits_page_size():
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(200, json={"value": []})

    run_with(make_client(handler), lambda c: c.get_all_pages("x", skip_top=True))

    assert "$top" not in seen[0].params


def test_sends_bearer_token():
    def handler(request):
        assert request.headers["Authorization"] == "Bearer token"
        return httpx.Response(200, json={"id": "dev"})

    assert run_with(make_client(handler), lambda c: c.get("x")) == {"id": "dev"}


@pytest.mark.parametrize("status", [401, 403])
def test_denied_raises_authorization_error(status):
    def handler(request):
        return httpx.Response(status, json={"error": {"message": "Missing role"}})

    with pytest.raises(GraphAuthorizationError) as exc:
        run_with(make_client(handler), lambda c: c.get_all_pages("deviceManagement/managedDevices"))
    assert exc.value.status_code == status
    assert "Missing role" in str(exc.value)


def test_get_denied_raises_authorization_error():
    def handler(request):
        return httpx.Response(403, json={"error": {"message": "Forbidden"}})

    with pytest.raises(GraphAuthorizationError):
        run_with(make_client(handler), lambda c: c.get("x"))


def test_server_error_raises_graph_api_error():
    def handler(request):
        return httpx.Response(500, text="boom")

    with pytest.raises(GraphAPIError) as exc:
        run_with(make_client(handler), lambda c: c.get("x"))
    assert exc.value.status_code == 500
    assert not isinstance(exc.value, GraphAuthorizationError)


def test_not_found_returns_marker():
    def handler(request):
        return httpx.Response(404)

    assert run_with(make_client(handler), lambda c: c.get("x"))["_not_found"] is True


def test_throttle_is_retried():
    calls = []

    def handler(request):
        calls.append(1)
        if len(calls) == 1:
            return httpx.Response(429, headers={"Retry-After": "0"})
        return httpx.Response(200, json={"value": [{"id": "1"}]})

    client = make_client(handler)
    items = run_with(client, lambda c: c.get_all_pages("x"))

    assert items == [{"id": "1"}]
    assert client.get_stats()["throttle_events"] == 1


def test_retries_exhausted_raises():
    def handler(request):
        return httpx.Response(503)

    with pytest.raises(GraphAPIError) as exc:
        run_with(make_client(handler, max_retries=2), lambda c: c.get("x"))
    assert exc.value.status_code == 503


def test_empty_body_is_empty_collection():
    def handler(request):
        return httpx.Response(200, content=b"")

    assert run_with(make_client(handler), lambda c: c.get("x")) == {"value": []}


def test_requires_context_manager():
    client = make_client(lambda request: httpx.Response(200, json={}))

    with pytest.raises(RuntimeError):
        asyncio.run(client.get("x"))


def test_guardian_allows_reads_and_blocks_writes():
    guardian = SafetyGuardian()

    assert guardian.validate_request("GET", f"{BASE}/deviceManagement/managedDevices")
    with pytest.raises(SafetyViolation, match="Device action"):
        guardian.validate_request("POST", f"{BASE}/deviceManagement/managedDevices/abc/wipe")
    with pytest.raises(SafetyViolation, match="Write method"):
        guardian.validate_request("PATCH", f"{BASE}/deviceManagement/managedDevices/abc")

    audit = guardian.get_audit_record()
    assert audit["checks_performed"] == 3
    assert audit["violations_detected"] == 2
    assert audit["status"] == "VIOLATIONS_DETECTED"
