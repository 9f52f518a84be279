from __future__ import annotations

import json

import httpx
import pytest

from wagateway.config import BrowserOptions
from wagateway.driver import SessionDriver, WawebDriver, WawebDriverFactory
from wagateway.errors import TransportError
from wagateway.state import EventKind


def _driver(handler, *, token: str | None = "hook-token") -> WawebDriver:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WawebDriver(
        "acme",
        "/srv/wa/.wwebjs_auth/acme",
        http=http,
        base_url="http://waweb.test/",
        options=BrowserOptions(executable_path="/usr/bin/chromium"),
        webhook_url="http://gateway.test/webhook/waweb/acme",
        token=token,
    )


def test_handlers_receive_emitted_events() -> None:
    driver = SessionDriver("acme", "/tmp/acme")
    seen: list[tuple] = []
    driver.on("qr", lambda *args: seen.append(("qr", *args)))
    driver.on(EventKind.READY, lambda *args: seen.append(("ready", *args)))

    driver.emit("qr", "payload")
    driver.dispatch("ready")
    driver.dispatch("auth_failure", "ignored without handler")

    assert seen == [("qr", "payload"), ("ready",)]


def test_unknown_event_names_raise() -> None:
    driver = SessionDriver("acme", "/tmp/acme")
    with pytest.raises(ValueError):
        driver.dispatch("message_create", {})
    with pytest.raises(ValueError):
        driver.on("loading_screen", lambda *args: None)


@pytest.mark.anyio
async def test_start_posts_browser_options_and_webhook() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202, json={"ok": True})

    driver = _driver(handler)
    await driver.start()

    assert len(requests) == 1
    request = requests[0]
    assert str(request.url) == "http://waweb.test/sessions/acme/start"
    assert request.headers["X-Auth-Token"] == "hook-token"
    body = json.loads(request.content)
    assert body["dataPath"] == "/srv/wa/.wwebjs_auth/acme"
    assert body["webhook"] == "http://gateway.test/webhook/waweb/acme"
    puppeteer = body["puppeteer"]
    assert puppeteer["headless"] is True
    assert puppeteer["executablePath"] == "/usr/bin/chromium"
    assert "--no-sandbox" in puppeteer["args"]
    assert "--user-data-dir=/srv/wa/.wwebjs_auth/acme/browser" in puppeteer["args"]
    assert puppeteer["ignoreDefaultArgs"] == ["--disable-extensions"]


@pytest.mark.anyio
async def test_start_raises_on_sidecar_error() -> None:
    driver = _driver(lambda request: httpx.Response(500, text="chromium missing"))
    with pytest.raises(httpx.HTTPStatusError):
        await driver.start()


@pytest.mark.anyio
async def test_send_message_returns_serialized_id() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"chatId": "15550001111@c.us", "body": "hi"}
        return httpx.Response(
            200, json={"id": {"_serialized": "true_15550001111@c.us_ABC", "fromMe": True}}
        )

    driver = _driver(handler, token=None)
    assert await driver.send_message("15550001111@c.us", "hi") == "true_15550001111@c.us_ABC"


@pytest.mark.anyio
async def test_send_message_accepts_plain_id() -> None:
    driver = _driver(lambda request: httpx.Response(200, json={"id": "ABC"}))
    assert await driver.send_message("15550001111@c.us", "hi") == "ABC"


@pytest.mark.anyio
async def test_send_message_maps_rejections() -> None:
    driver = _driver(lambda request: httpx.Response(422, text="not a whatsapp user"))
    with pytest.raises(TransportError) as exc:
        await driver.send_message("15550001111@c.us", "hi")
    assert exc.value.code == "send_rejected"
    assert exc.value.message == "not a whatsapp user"


@pytest.mark.anyio
async def test_send_message_maps_connection_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    driver = _driver(handler)
    with pytest.raises(TransportError) as exc:
        await driver.send_message("15550001111@c.us", "hi")
    assert exc.value.code == "transport_failed"


@pytest.mark.anyio
async def test_send_message_requires_message_id() -> None:
    driver = _driver(lambda request: httpx.Response(200, json={"ack": 1}))
    with pytest.raises(TransportError) as exc:
        await driver.send_message("15550001111@c.us", "hi")
    assert exc.value.code == "bad_response"


@pytest.mark.anyio
async def test_destroy_swallows_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("gone", request=request)

    driver = _driver(handler)
    await driver.destroy()


@pytest.mark.anyio
async def test_factory_builds_per_client_webhook_urls() -> None:
    factory = WawebDriverFactory(
        "http://waweb.test",
        BrowserOptions(),
        token="hook-token",
        webhook_base_url="http://gateway.test/",
    )
    try:
        alpha = factory("alpha", "/srv/alpha")
        beta = factory("beta", "/srv/beta")
        assert alpha._webhook_url == "http://gateway.test/webhook/waweb/alpha"
        assert beta._webhook_url == "http://gateway.test/webhook/waweb/beta"
        assert alpha._http is beta._http
    finally:
        await factory.aclose()
