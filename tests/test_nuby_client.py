import json
from datetime import datetime

import httpx
import pytest

from commerce_hooks.integrations import nuby
from commerce_hooks.integrations.nuby import NubyApiError, NubyClient, normalize_instance, sanitize_body


@pytest.mark.parametrize(
    "raw", ["acme", "  ACME ", "https://acme.arrendasoft.co", "http://acme.arrendasoft.co/service/v2/public"]
)
def test_normalize_instance(raw):
    assert normalize_instance(raw) == "acme"


def test_base_url():
    assert NubyClient("https://Acme.arrendasoft.co/").base_url == "https://acme.arrendasoft.co/service/v2/public"


def test_sanitize_body_strips_bom_and_control_chars():
    assert sanitize_body('\ufeff[{"titulo": "Apto\x07 centro"}]\n') == '[{"titulo": "Apto centro"}]\n'


def _page(codes):
    return [{"codigo": code, "titulo": f"Propiedad {code}"} for code in codes]


async def test_list_properties_uses_stored_token_and_params():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["authorization"]
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=_page(["A1"]))

    client = NubyClient("acme", token="stored-token", transport=httpx.MockTransport(handler))
    result = await client.list_properties(page=2, limit=25, updated_start_date="2024-01-01", ignored="x")

    assert result == _page(["A1"])
    assert seen["auth"] == "Bearer stored-token"
    assert seen["params"] == {"page": "2", "limit": "25", "updated_start_date": "2024-01-01"}


async def test_login_fallback_when_no_token():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/auth/login"):
            assert json.loads(request.content) == {"username": "client", "password": "secret"}
            return httpx.Response(200, json={"token": "fresh"})
        assert request.headers["authorization"] == "Bearer fresh"
        return httpx.Response(200, json=[])

    client = NubyClient("acme", client_id="client", secret_key="secret", transport=httpx.MockTransport(handler))
    await client.list_properties()
    await client.list_properties(page=2)

    logins = [r for r in requests if r.url.path.endswith("/auth/login")]
    assert len(logins) == 1


async def test_login_without_token_fails():
    transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "bad credentials"}))
    client = NubyClient("acme", client_id="c", secret_key="s", transport=transport)

    with pytest.raises(NubyApiError, match="Login failed"):
        await client.list_properties()


async def test_http_error_raises_with_status_and_body():
    transport = httpx.MockTransport(lambda request: httpx.Response(400, text="bad filter"))
    client = NubyClient("acme", token="t", transport=transport)

    with pytest.raises(NubyApiError) as exc_info:
        await client.get_property_by_code("A1")

    assert exc_info.value.status_code == 400
    assert exc_info.value.body == "bad filter"


async def test_invalid_json_raises():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>oops</html>"))
    client = NubyClient("acme", token="t", transport=transport)

    with pytest.raises(NubyApiError, match="^Invalid JSON"):
        await client.list_properties()


async def test_sync_all_properties_pages_until_short_page(monkeypatch):
    monkeypatch.setattr(nuby.settings, "NUBY_PAGE_LIMIT", 2)
    monkeypatch.setattr(nuby.settings, "NUBY_MAX_PAGES", 5)
    pages = {"1": _page(["A", "B"]), "2": _page(["C", "D"]), "3": _page(["E"])}
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=pages[request.url.params["page"]]))

    result = await NubyClient("acme", token="t", transport=transport).sync_all_properties()

    assert [p["codigo"] for p in result] == ["A", "B", "C", "D", "E"]


async def test_sync_all_properties_stops_at_max_pages(monkeypatch):
    monkeypatch.setattr(nuby.settings, "NUBY_PAGE_LIMIT", 1)
    monkeypatch.setattr(nuby.settings, "NUBY_MAX_PAGES", 2)
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json=_page([f"P{request.url.params['page']}"]))
    )

    result = await NubyClient("acme", token="t", transport=transport).sync_all_properties()

    assert [p["codigo"] for p in result] == ["P1", "P2"]


async def test_updated_since_dedupes_and_retries_invalid_json(monkeypatch):
    monkeypatch.setattr(nuby.settings, "NUBY_PAGE_LIMIT", 2)
    monkeypatch.setattr(nuby.settings, "NUBY_MAX_PAGES", 3)
    seen_limits = []

    def handler(request: httpx.Request) -> httpx.Response:
        page, limit = request.url.params["page"], request.url.params["limit"]
        seen_limits.append((page, limit))
        assert "updated_start_date" not in request.url.params
        if page == "1":
            return httpx.Response(200, json=_page(["A", "B"]))
        if page == "2" and limit == "2":
            return httpx.Response(200, text="[{broken")
        return httpx.Response(200, json=_page(["B"]))

    client = NubyClient("acme", token="t", transport=httpx.MockTransport(handler))
    result = await client.get_updated_properties_since(datetime(2024, 1, 1))

    assert [p["codigo"] for p in result] == ["A", "B"]
    assert seen_limits == [("1", "2"), ("2", "2"), ("2", "10")]
