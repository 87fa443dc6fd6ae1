"""Session-aware asynchronous HTTP dispatcher.

This module wraps the ``httpx`` asynchronous client used by every connector
operation.  One :class:`SessionDispatcher` owns one authenticated session: the
cookie jar, the tenant base URL handed out by the login endpoint and a
connection pool bounded by ``max_sockets``.  When a request is rejected with
an authentication status the dispatcher logs in again once and replays the
request once; a second rejection is terminal.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set

import httpx

from .config import ConnectorSettings, Credentials
from .endpoints import EndpointConfig, get_endpoint
from .errors import AuthenticationError, ErrorPolicy, RemoteRequestError

# HTTP status codes signalling a missing or expired session
AUTH_FAILURE_STATUS_CODES: Set[int] = {401, 403}

TENANT_ID_HEADER = "x-ibm-dx-tenant-id"
TENANT_BASE_URL_HEADER = "x-ibm-dx-tenant-base-url"


class SessionState(Enum):
    """Lifecycle of the dispatcher's session."""

    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    LOGIN_FAILED = "login_failed"


@dataclass(frozen=True)
class RequestTemplate:
    """A request relative to the current tenant base URL."""

    method: str
    path: str
    params: Optional[Any] = None
    json: Optional[Any] = None
    headers: Dict[str, str] = field(default_factory=dict)


class SessionDispatcher:
    """Sends requests on behalf of one (possibly anonymous) session."""

    DEFAULT_USER_AGENT = "wchconnector/1.0"

    def __init__(
        self,
        settings: ConnectorSettings,
        *,
        error_policy: Optional[ErrorPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the dispatcher.

        Parameters
        ----------
        settings : ConnectorSettings
            Endpoint, credentials and pool configuration.
        error_policy : ErrorPolicy, optional
            Applied to every terminal failure. Defaults to rethrow.
        transport : httpx.AsyncBaseTransport, optional
            Custom transport, e.g. ``httpx.MockTransport`` in tests.

        When credentials are present and an event loop is running, the login
        starts right away; otherwise it starts with the first request.
        """
        self.settings = settings
        self.endpoint: EndpointConfig = get_endpoint(settings.endpoint)
        self.error_policy = error_policy or ErrorPolicy.rethrow()
        self.logger = logging.getLogger(self.__class__.__name__)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._base_url = settings.resolved_base_url
        self._credentials = settings.credentials
        self._login_task: Optional[asyncio.Task] = None
        self._login_generation = 0
        self._auth_lock: Optional[asyncio.Lock] = None
        self._state = SessionState.ANONYMOUS
        self._request_count = 0
        self._total_request_time = 0.0

        if self._credentials is not None:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                self.logger.debug("No running event loop, login deferred to first request")
            else:
                self._start_login()

    async def __aenter__(self) -> "SessionDispatcher":
        self._get_client()
        if self._credentials is not None and self._login_task is None:
            self._start_login()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def base_url(self) -> str:
        """Base URL used for the next request.

        Replaced as a whole by the login path, so concurrent readers see
        either the old or the new value.
        """
        return self._base_url

    @property
    def max_sockets(self) -> int:
        return self.settings.max_sockets

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the pooled HTTP client."""
        if self._client is None or self._client.is_closed:
            limits = httpx.Limits(
                max_connections=self.settings.max_sockets,
                max_keepalive_connections=self.settings.max_sockets,
            )
            self._client = httpx.AsyncClient(
                timeout=self.settings.timeout,
                verify=self.settings.reject_unauthorized,
                limits=limits,
                headers={"User-Agent": self.DEFAULT_USER_AGENT, "Accept": "application/json"},
                transport=self._transport,
                follow_redirects=True,
            )
            self.logger.debug(
                "HTTP client initialized (timeout=%.1fs, max_sockets=%d)",
                self.settings.timeout,
                self.settings.max_sockets,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and abandon any pending login."""
        if self._login_task is not None and not self._login_task.done():
            self._login_task.cancel()
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            if self._request_count > 0:
                avg_time = self._total_request_time / self._request_count
                self.logger.debug(
                    "HTTP client closed (requests=%d, avg_time=%.2fms)",
                    self._request_count,
                    avg_time * 1000,
                )

    # -- session handling -------------------------------------------------

    def _start_login(self) -> asyncio.Task:
        credentials = self._credentials
        if credentials is None:
            raise AuthenticationError("Cannot log in without credentials")
        self._state = SessionState.AUTHENTICATING
        self._login_generation += 1
        self._login_task = asyncio.ensure_future(self._login(credentials))
        self._login_task.add_done_callback(self._on_login_done)
        return self._login_task

    def _on_login_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        if task.exception() is not None:
            self.logger.warning("Login failed: %s", task.exception())

    async def _login(self, credentials: Credentials) -> str:
        """Log in with basic auth and return the tenant base URL."""
        url = f"{self.settings.resolved_base_url}{self.endpoint.uri_auth}"
        headers = {}
        if self.settings.tenant_id:
            headers[TENANT_ID_HEADER] = self.settings.tenant_id

        self.logger.debug("Logging in as %s", credentials.username)
        try:
            response = await self._get_client().get(
                url,
                headers=headers,
                auth=(credentials.username, credentials.password),
            )
        except httpx.HTTPError as exc:
            self._state = SessionState.LOGIN_FAILED
            raise AuthenticationError(f"Login request failed: {exc}") from exc

        if response.is_error:
            self._state = SessionState.LOGIN_FAILED
            raise AuthenticationError(
                f"Login failed with status {response.status_code}",
                status_code=response.status_code,
            )

        base_url = response.headers.get(TENANT_BASE_URL_HEADER) or self.settings.resolved_base_url
        self._base_url = base_url.rstrip("/")
        self._state = SessionState.AUTHENTICATED
        self.logger.info("Logged in, using base URL %s", self._base_url)
        return self._base_url

    async def _ensure_session(self) -> str:
        if self._credentials is None:
            return self._base_url
        task = self._login_task
        if task is None or (task.done() and not task.cancelled() and task.exception() is not None):
            task = self._start_login()
        return await task

    async def _reauthenticate(self, seen_generation: int) -> str:
        """Log in again unless another request already did since ``seen_generation``."""
        # Created on first use so it binds to the loop that runs the requests
        if self._auth_lock is None:
            self._auth_lock = asyncio.Lock()
        async with self._auth_lock:
            if self._login_generation == seen_generation:
                self.logger.info("Authentication failed, logging in again")
                task = self._start_login()
            else:
                task = self._login_task
        return await task

    async def current_base_url(self) -> str:
        """Wait for any pending login and return the base URL."""
        try:
            return await self._ensure_session()
        except AuthenticationError as exc:
            return self.error_policy.handle(exc)

    # -- requests ---------------------------------------------------------

    async def _issue(self, base_url: str, template: RequestTemplate) -> httpx.Response:
        url = f"{base_url}{template.path}"
        start_time = time.monotonic()
        try:
            response = await self._get_client().request(
                template.method,
                url,
                params=template.params,
                json=template.json,
                headers=template.headers or None,
            )
        except httpx.HTTPError as exc:
            self.logger.warning("Request error on %s %s: %s", template.method, url[:100], exc)
            raise RemoteRequestError(
                f"{template.method} {url} failed: {exc}",
                method=template.method,
                url=url,
            ) from exc

        elapsed = time.monotonic() - start_time
        self._request_count += 1
        self._total_request_time += elapsed
        self.logger.debug(
            "%s %s -> %d (%.2fms)",
            template.method,
            url[:100],
            response.status_code,
            elapsed * 1000,
        )
        return response

    async def send(self, template: RequestTemplate) -> Any:
        """Send a request and return the decoded JSON body.

        Parameters
        ----------
        template : RequestTemplate
            Method, path relative to the base URL, query params and body.

        Returns
        -------
        Any
            Decoded JSON, the raw text for non-JSON bodies, or ``None`` for
            an empty body. A custom error policy may substitute a value.

        Raises
        ------
        AuthenticationError
            If logging in fails or the replayed request is rejected again.
        RemoteRequestError
            For any other non-2xx status or transport failure.
        """
        try:
            base_url = await self._ensure_session()
            generation = self._login_generation
            response = await self._issue(base_url, template)

            if response.status_code in AUTH_FAILURE_STATUS_CODES:
                if self._credentials is None:
                    raise AuthenticationError(
                        f"{template.method} {template.path} requires authentication",
                        status_code=response.status_code,
                    )
                base_url = await self._reauthenticate(generation)
                response = await self._issue(base_url, template)
                if response.status_code in AUTH_FAILURE_STATUS_CODES:
                    raise AuthenticationError(
                        f"{template.method} {template.path} rejected after a fresh login",
                        status_code=response.status_code,
                    )

            if response.is_error:
                raise RemoteRequestError.from_response(response)
        except (AuthenticationError, RemoteRequestError) as exc:
            return self.error_policy.handle(exc)

        return self._decode(response)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def get(self, path: str, *, params: Optional[Any] = None) -> Any:
        """Send a GET request."""
        return await self.send(RequestTemplate("GET", path, params=params))

    async def post(self, path: str, *, json: Any = None, params: Optional[Any] = None) -> Any:
        """Send a POST request with a JSON body."""
        return await self.send(RequestTemplate("POST", path, params=params, json=json))

    async def put(self, path: str, *, json: Any = None, params: Optional[Any] = None) -> Any:
        """Send a PUT request with a JSON body."""
        return await self.send(RequestTemplate("PUT", path, params=params, json=json))

    async def delete(self, path: str, *, params: Optional[Any] = None) -> Any:
        """Send a DELETE request."""
        return await self.send(RequestTemplate("DELETE", path, params=params))

    @property
    def stats(self) -> Dict[str, Any]:
        """Get request statistics.

        Returns
        -------
        dict
            Statistics including request count and average time.
        """
        return {
            "request_count": self._request_count,
            "total_time_ms": self._total_request_time * 1000,
            "avg_time_ms": (
                (self._total_request_time / self._request_count * 1000)
                if self._request_count > 0
                else 0
            ),
            "state": self._state.value,
        }
