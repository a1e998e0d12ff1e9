"""Tests for the firewall API client."""

import json

import httpx
import pytest

from wafsync.client import FirewallClient, create_http_client
from wafsync.config import Settings
from wafsync.errors import ClientError, NetworkError, RateLimited, ServerError


class RecordingHandler:
    """MockTransport handler replying from a queue of responses."""

    def __init__(self, *responses: httpx.Response | Exception):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_client(
    settings: Settings, handler: RecordingHandler, **kwargs
) -> FirewallClient:
    http_client = httpx.Client(
        base_url=settings.api_base_url, transport=httpx.MockTransport(handler)
    )
    return FirewallClient(http_client, settings, **kwargs)


class TestFirewallClient:
    """Test FirewallClient."""

    def test_authorization_header(self, settings: Settings) -> None:
        http_client = create_http_client(settings)
        try:
            assert http_client.headers["Authorization"] == "Bearer test-token"
            assert str(http_client.base_url).startswith("https://api.vercel.com")
        finally:
            http_client.close()

    def test_validate_auth(self, settings: Settings) -> None:
        handler = RecordingHandler(httpx.Response(200, json={"user": {"username": "alice"}}))
        client = make_client(settings, handler)

        assert client.validate_auth() == "alice"
        assert handler.requests[0].url.path == "/v2/user"

    def test_scope_params(self, settings: Settings) -> None:
        handler = RecordingHandler(httpx.Response(200, json={"active": {"rules": []}}))
        client = make_client(settings.model_copy(update={"team_slug": "acme"}), handler)

        client.get_firewall_config()

        params = handler.requests[0].url.params
        assert params["projectId"] == "prj_test"
        assert params["teamId"] == "team_test"
        assert params["slug"] == "acme"

    def test_config_fallback(self, settings: Settings) -> None:
        """The non-active endpoint is tried when the active one is rejected."""
        handler = RecordingHandler(
            httpx.Response(404, json={"error": {"code": "not_found", "message": "nope"}}),
            httpx.Response(200, json={"rules": [{"id": "r1", "name": "x"}]}),
        )
        client = make_client(settings, handler)

        config = client.get_firewall_config()

        assert config == {"rules": [{"id": "r1", "name": "x"}]}
        assert [r.url.path for r in handler.requests] == [
            "/v1/security/firewall/config/active",
            "/v1/security/firewall/config",
        ]

    def test_config_not_found(self, settings: Settings) -> None:
        handler = RecordingHandler(httpx.Response(404), httpx.Response(404))
        client = make_client(settings, handler)

        with pytest.raises(ClientError) as exc_info:
            client.get_firewall_config()
        assert exc_info.value.status_code == 404

    def test_remove_sends_null_value(self, settings: Settings) -> None:
        handler = RecordingHandler(httpx.Response(200, json={}))
        client = make_client(settings, handler)

        client.remove_rule("rule_1")

        request = handler.requests[0]
        assert request.method == "PATCH"
        assert request.url.path == "/v1/security/firewall/config"
        assert json.loads(request.content) == {
            "action": "rules.remove",
            "id": "rule_1",
            "value": None,
        }

    def test_insert_and_update_bodies(self, settings: Settings) -> None:
        handler = RecordingHandler(httpx.Response(200), httpx.Response(200))
        client = make_client(settings, handler)

        client.insert_rule({"name": "r"})
        client.update_rule("rule_1", {"name": "r"})

        bodies = [json.loads(r.content) for r in handler.requests]
        assert bodies[0] == {"action": "rules.insert", "id": None, "value": {"name": "r"}}
        assert bodies[1] == {"action": "rules.update", "id": "rule_1", "value": {"name": "r"}}

    def test_set_rule_active(self, settings: Settings) -> None:
        handler = RecordingHandler(httpx.Response(200, json={}))
        client = make_client(settings, handler)

        client.set_rule_active("rule_1", False)

        assert json.loads(handler.requests[0].content)["value"] == {"active": False}

    def test_empty_success_body(self, settings: Settings) -> None:
        handler = RecordingHandler(httpx.Response(204))
        client = make_client(settings, handler)
        assert client.request("GET", "/v2/user") == {}


class TestErrorMapping:
    """Test mapping of failures onto RemoteError subclasses."""

    def test_rate_limited(self, settings: Settings) -> None:
        handler = RecordingHandler(httpx.Response(429, headers={"Retry-After": "5"}))
        client = make_client(settings, handler)

        with pytest.raises(RateLimited) as exc_info:
            client.request("GET", "/v2/user")
        assert exc_info.value.retry_after == 5.0
        assert exc_info.value.retryable

    def test_server_error(self, settings: Settings) -> None:
        handler = RecordingHandler(httpx.Response(503, text="unavailable"))
        client = make_client(settings, handler)

        with pytest.raises(ServerError) as exc_info:
            client.request("GET", "/v2/user")
        assert exc_info.value.status_code == 503
        assert exc_info.value.detail == "unavailable"

    def test_firewall_internal_error_code(self, settings: Settings) -> None:
        """FIREWALL_INTERNAL_ERROR is retryable regardless of status."""
        body = {"error": {"code": "FIREWALL_INTERNAL_ERROR", "message": "try again"}}
        handler = RecordingHandler(httpx.Response(400, json=body))
        client = make_client(settings, handler)

        with pytest.raises(ServerError, match="try again"):
            client.insert_rule({"name": "r"})

    def test_client_error(self, settings: Settings) -> None:
        body = {"error": {"code": "forbidden", "message": "Not authorized"}}
        handler = RecordingHandler(httpx.Response(403, json=body))
        client = make_client(settings, handler)

        with pytest.raises(ClientError) as exc_info:
            client.request("GET", "/v2/user")
        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "Not authorized"
        assert not exc_info.value.retryable

    def test_network_error(self, settings: Settings) -> None:
        handler = RecordingHandler(httpx.ConnectError("connection refused"))
        client = make_client(settings, handler)

        with pytest.raises(NetworkError):
            client.request("GET", "/v2/user")


class TestPacing:
    """Test minimum spacing between requests."""

    def test_waits_for_remaining_gap(self, settings: Settings, sleeps: list[float]) -> None:
        ticks = iter([10.0, 10.3, 11.5])
        handler = RecordingHandler(httpx.Response(200), httpx.Response(200))
        client = make_client(
            settings.model_copy(update={"rate_limit_delay_ms": 800}),
            handler,
            sleep=sleeps.append,
            clock=lambda: next(ticks),
        )

        client.request("GET", "/v2/user")
        client.request("GET", "/v2/user")

        assert sleeps == [pytest.approx(0.5)]

    def test_no_wait_after_long_gap(self, settings: Settings, sleeps: list[float]) -> None:
        ticks = iter([10.0, 12.0, 12.1])
        handler = RecordingHandler(httpx.Response(200), httpx.Response(200))
        client = make_client(
            settings.model_copy(update={"rate_limit_delay_ms": 800}),
            handler,
            sleep=sleeps.append,
            clock=lambda: next(ticks),
        )

        client.request("GET", "/v2/user")
        client.request("GET", "/v2/user")

        assert sleeps == []
