"""HTTP client for the Vercel project firewall API."""

import json
import logging
import time
from typing import Any, Callable

import httpx

from .config import Settings
from .errors import ClientError, NetworkError, RateLimited, ServerError

logger = logging.getLogger(__name__)

FIREWALL_CONFIG_PATH = "/v1/security/firewall/config"
ACTIVE_CONFIG_PATH = "/v1/security/firewall/config/active"
INTERNAL_ERROR_CODES = {"FIREWALL_INTERNAL_ERROR"}


def create_http_client(settings: Settings) -> httpx.Client:
    """Create an httpx client with base URL, auth header and timeout."""
    headers = {"Content-Type": "application/json"}
    if settings.vercel_token:
        headers["Authorization"] = f"Bearer {settings.vercel_token}"
    return httpx.Client(
        base_url=settings.api_base_url,
        headers=headers,
        timeout=settings.request_timeout,
    )


def _error_body(response: httpx.Response) -> tuple[str | None, str | None]:
    """Extract (error code, error message) from an API error response."""
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        return None, response.text or None
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return None, response.text or None
    return error.get("code"), error.get("message") or response.text or None


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class FirewallClient:
    """Single-attempt calls against the firewall API.

    Calls are issued one at a time with at least ``settings.rate_limit_delay``
    seconds between consecutive requests. Failures are raised as typed
    :class:`~wafsync.errors.RemoteError` subclasses; retrying is left to the
    caller.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.http_client = http_client
        self.settings = settings
        self._sleep = sleep
        self._clock = clock
        self._last_request: float | None = None

    def close(self) -> None:
        self.http_client.close()

    def __enter__(self) -> "FirewallClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def scope_params(self) -> dict[str, str]:
        params = {"projectId": self.settings.project_id}
        if self.settings.team_id:
            params["teamId"] = self.settings.team_id
        if self.settings.team_slug:
            params["slug"] = self.settings.team_slug
        return params

    def _pace(self) -> None:
        delay = self.settings.rate_limit_delay
        if self._last_request is None or delay <= 0:
            return
        elapsed = self._clock() - self._last_request
        if elapsed < delay:
            self._sleep(delay - elapsed)

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            NetworkError: On transport failures
            RateLimited: On HTTP 429
            ServerError: On 5xx or a firewall internal error code
            ClientError: On any other non-success status
        """
        self._pace()
        logger.debug(f"API request: {method} {path} params={params}")
        if body is not None:
            logger.debug(f"Request body: {json.dumps(body)}")

        try:
            response = self.http_client.request(method, path, params=params, json=body)
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e
        finally:
            self._last_request = self._clock()

        logger.debug(f"Response: {response.status_code}")
        if response.is_success:
            if not response.content:
                return {}
            try:
                return response.json()
            except (json.JSONDecodeError, ValueError):
                return {}

        code, message = _error_body(response)
        status = response.status_code
        if status == 429 or code == "RATE_LIMITED":
            raise RateLimited(
                f"Rate limited on {method} {path}",
                status_code=status,
                detail=message,
                retry_after=_retry_after(response),
            )
        if status >= 500 or code in INTERNAL_ERROR_CODES:
            raise ServerError(
                f"Server error on {method} {path}", status_code=status, detail=message
            )
        raise ClientError(
            f"Request {method} {path} rejected", status_code=status, detail=message
        )

    def get_user(self) -> dict[str, Any]:
        return self.request("GET", "/v2/user")

    def validate_auth(self) -> str:
        """Check the token and return the authenticated username.

        Raises:
            ClientError: If the token is missing, invalid or expired
        """
        logger.info("Validating authentication...")
        body = self.get_user()
        user = body.get("user") or {}
        username = user.get("username") or body.get("username") or "unknown"
        logger.info(f"Authenticated as: {username}")
        return username

    def fetch_team_slug(self, team_id: str) -> str | None:
        body = self.request("GET", f"/v2/teams/{team_id}")
        return body.get("slug") or None

    def get_firewall_config(self) -> dict[str, Any]:
        """Fetch the active firewall configuration for the project.

        Falls back to the non-``/active`` endpoint when the first one is
        rejected.
        """
        logger.info("Fetching current firewall configuration...")
        params = self.scope_params()
        try:
            return self.request("GET", ACTIVE_CONFIG_PATH, params=params) or {}
        except ClientError as e:
            logger.debug(f"Active config unavailable ({e}); trying {FIREWALL_CONFIG_PATH}")
        try:
            return self.request("GET", FIREWALL_CONFIG_PATH, params=params) or {}
        except ClientError as e:
            if e.status_code == 404:
                logger.error(
                    "Firewall config not found. Check that the firewall is enabled, "
                    "PROJECT_ID is correct and TEAM_ID/TEAM_SLUG match."
                )
            elif e.status_code == 403:
                logger.error(
                    "Access denied. Check token permissions "
                    "(need read:project, write:project)."
                )
            raise

    def _patch(self, action: str, rule_id: str | None, value: Any) -> Any:
        body = {"action": action, "id": rule_id, "value": value}
        return self.request(
            "PATCH", FIREWALL_CONFIG_PATH, params=self.scope_params(), body=body
        )

    def insert_rule(self, value: dict[str, Any]) -> Any:
        return self._patch("rules.insert", None, value)

    def update_rule(self, rule_id: str, value: dict[str, Any]) -> Any:
        return self._patch("rules.update", rule_id, value)

    def set_rule_active(self, rule_id: str, active: bool) -> Any:
        return self._patch("rules.update", rule_id, {"active": active})

    def remove_rule(self, rule_id: str) -> Any:
        # The API requires an explicit null value for removals
        return self._patch("rules.remove", rule_id, None)
