"""HTTP client for the EVV API.

Every call goes through one pipeline: requests made while offline are queued
and replayed once connectivity returns, transient network failures are retried
with exponential backoff, and a 401 outside the login call ends the session.
Blocking ``requests`` calls run on a worker thread so callers can await them.
"""

from __future__ import annotations

import asyncio
import collections
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urljoin

import requests

from .config import ClientConfig
from .models import AuthUser, Location, Priority, QueuedRequest, RequestSpec
from .state import ConnectivityState, OfflineQueue, ReadCache, SessionState

logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"
SHIFTS_CACHE_KEY = "GET /caregiver/shifts"
ALL_SHIFTS_CACHE_KEY = "GET /shifts/caregivers"
ROLES_CACHE_KEY = "GET /roles"
CLIENTS_CACHE_KEY = "GET /clients"

NETWORK_ERROR_MESSAGE = "Network error. Please check your connection."
SESSION_EXPIRED_MESSAGE = "Session expired. Please login again."
INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"
GENERIC_ERROR_MESSAGE = "An error occurred"
LOGGED_OUT_MESSAGE = "Logged out"
INTERRUPTED_MESSAGE = "Request was interrupted. Please try again."

Sleep = Callable[[float], Awaitable[Any]]


class ApiError(RuntimeError):
    """Error surfaced to callers of the API client."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransientTransportError(Exception):
    """A timeout or connection failure that is worth another attempt."""


def request_priority(path: str) -> Priority:
    return Priority.HIGH if "/visits" in path else Priority.MEDIUM


class ApiClient:
    """Wraps calls to the EVV API with queueing, retries and session handling."""

    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[SessionState] = None,
        connectivity: Optional[ConnectivityState] = None,
        queue: Optional[OfflineQueue] = None,
        cache: Optional[ReadCache] = None,
        http: Optional[requests.Session] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.session = session or SessionState()
        self.connectivity = connectivity or ConnectivityState()
        self.queue = queue or OfflineQueue()
        self.cache = cache or ReadCache()
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._http = http or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: ClientConfig, **kwargs: Any) -> "ApiClient":
        kwargs.setdefault("cache", ReadCache(ttl_seconds=config.cache_ttl_seconds))
        client = cls(
            config.api_base_url,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
            backoff_seconds=config.backoff_seconds,
            **kwargs,
        )
        if config.api_token and not client.session.is_authenticated:
            client.session.set(config.api_token, None)
        return client

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    def _headers(self, request_id: str) -> Dict[str, str]:
        headers = {"Accept": "application/json", "X-Request-ID": request_id}
        token = self.session.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        spec = RequestSpec(method=method, path=path, json=json, params=params, request_id=str(uuid.uuid4()))
        if not self.connectivity.online:
            return await self.queue.enqueue(spec, request_priority(path))
        return await self._dispatch(spec)

    async def _send(self, spec: RequestSpec) -> requests.Response:
        url = urljoin(self.base_url, spec.path.lstrip("/"))
        try:
            return await asyncio.to_thread(
                self._http.request,
                spec.method,
                url,
                json=spec.json,
                params=spec.params,
                headers=self._headers(spec.request_id),
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransientTransportError(str(exc)) from exc
        except requests.RequestException as exc:
            logger.error("Request %s %s failed: %s", spec.method, spec.path, exc)
            raise ApiError(GENERIC_ERROR_MESSAGE) from exc

    async def _send_with_retry(self, spec: RequestSpec) -> requests.Response:
        attempt = 0
        while True:
            try:
                return await self._send(spec)
            except TransientTransportError as exc:
                if attempt >= self.max_retries:
                    logger.error(
                        "Giving up on %s %s after %d retries [%s]",
                        spec.method,
                        spec.path,
                        attempt,
                        spec.request_id,
                    )
                    raise ApiError(NETWORK_ERROR_MESSAGE) from exc
                delay = self.backoff_seconds * (2**attempt)
                attempt += 1
                logger.warning(
                    "Retrying %s %s in %.1fs (attempt %d/%d): %s",
                    spec.method,
                    spec.path,
                    delay,
                    attempt,
                    self.max_retries,
                    exc,
                )
                await self._sleep(delay)

    async def _dispatch(self, spec: RequestSpec) -> Any:
        response = await self._send_with_retry(spec)
        body = self._decode(response)

        if response.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            logger.error(
                "%s %s returned %d: %s [%s]",
                spec.method,
                spec.path,
                response.status_code,
                message,
                spec.request_id,
            )
            if response.status_code == 401:
                if spec.path.startswith(LOGIN_PATH):
                    raise ApiError(message or INVALID_CREDENTIALS_MESSAGE, status_code=401, body=body)
                self.session.expire()
                raise ApiError(SESSION_EXPIRED_MESSAGE, status_code=401, body=body)
            raise ApiError(message or GENERIC_ERROR_MESSAGE, status_code=response.status_code, body=body)

        logger.info("%s %s -> %d [%s]", spec.method, spec.path, response.status_code, spec.request_id)
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        if response.headers.get("Content-Type", "").startswith("application/json"):
            try:
                return response.json()
            except ValueError:
                return None
        return None

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------
    async def set_online(self, online: bool) -> None:
        if self.connectivity.set_online(online):
            logger.info("Connection restored; replaying %d queued request(s)", len(self.queue))
            await self.flush_queue()
        elif not online:
            logger.info("Connection lost; requests will be queued")

    async def flush_queue(self) -> None:
        """Send queued requests one at a time in priority order.

        If the flush stops early, requests not yet settled go back to the
        queue while offline and are rejected otherwise.
        """

        pending = collections.deque(self.queue.drain())
        try:
            while pending:
                item = pending[0]
                if not item.future.done():
                    try:
                        result = await self._dispatch(item.spec)
                    except ApiError as exc:
                        if not item.future.done():
                            item.future.set_exception(exc)
                    else:
                        if not item.future.done():
                            item.future.set_result(result)
                pending.popleft()
        finally:
            if pending:
                self._abandon_flush(list(pending))

    def _abandon_flush(self, items: List[QueuedRequest]) -> None:
        if not self.connectivity.online:
            self.queue.requeue(items)
            logger.info("Flush interrupted; %d request(s) queued again", len(items))
            return
        error = ApiError(INTERRUPTED_MESSAGE)
        for item in items:
            if not item.future.done():
                item.future.set_exception(error)
        logger.warning("Flush interrupted; rejected %d queued request(s)", len(items))

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    async def login(self, email: str, password: str) -> AuthUser:
        data = await self._request("POST", LOGIN_PATH, json={"email": email, "password": password})
        return self._start_session(data)

    async def register(
        self,
        *,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role_id: str,
    ) -> AuthUser:
        payload = {
            "email": email,
            "password": password,
            "firstName": first_name,
            "lastName": last_name,
            "roleId": role_id,
        }
        data = await self._request("POST", "/auth/register", json=payload)
        return self._start_session(data)

    def _start_session(self, data: Any) -> AuthUser:
        data = data or {}
        user = AuthUser.from_payload(data.get("user") or {})
        self.session.set(data["token"], user)
        self.cache.clear()
        return user

    def logout(self) -> None:
        self.session.clear()
        self.cache.clear()
        dropped = self.queue.clear(ApiError(LOGGED_OUT_MESSAGE))
        if dropped:
            logger.info("Discarded %d queued request(s) on logout", dropped)

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------
    async def get_roles(self, *, use_cache: bool = True) -> Dict[str, Any]:
        return await self._cached_get(ROLES_CACHE_KEY, "/roles", use_cache)

    async def get_clients(self, *, use_cache: bool = True) -> Dict[str, Any]:
        return await self._cached_get(CLIENTS_CACHE_KEY, "/clients", use_cache)

    # ------------------------------------------------------------------
    # Shifts
    # ------------------------------------------------------------------
    async def _cached_get(self, key: str, path: str, use_cache: bool) -> Any:
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        data = await self._request("GET", path)
        self.cache.set(key, data)
        return data

    async def get_caregiver_shifts(self, *, use_cache: bool = False) -> Dict[str, Any]:
        return await self._cached_get(SHIFTS_CACHE_KEY, "/caregiver/shifts", use_cache)

    async def get_all_caregiver_shifts(self, *, use_cache: bool = False) -> Dict[str, Any]:
        return await self._cached_get(ALL_SHIFTS_CACHE_KEY, "/shifts/caregivers", use_cache)

    async def create_caregiver_shift(self, *, date: str, client_id: str) -> Dict[str, Any]:
        data = await self._request("POST", "/caregiver/shifts", json={"date": date, "clientId": client_id})
        self.cache.invalidate(SHIFTS_CACHE_KEY)
        return data

    async def create_shift(self, *, date: str, client_id: str, caregiver_id: str) -> Dict[str, Any]:
        payload = {"date": date, "clientId": client_id, "caregiverId": caregiver_id}
        data = await self._request("POST", "/shifts", json=payload)
        self._invalidate_shift_reads()
        return data

    async def update_shift(self, shift_id: str, **changes: Any) -> Dict[str, Any]:
        payload = {_camel(key): value for key, value in changes.items()}
        data = await self._request("PUT", f"/shifts/{shift_id}", json=payload)
        self._invalidate_shift_reads()
        return data

    async def delete_shift(self, shift_id: str) -> None:
        await self._request("DELETE", f"/shifts/{shift_id}")
        self._invalidate_shift_reads()

    def _invalidate_shift_reads(self) -> None:
        self.cache.invalidate(SHIFTS_CACHE_KEY)
        self.cache.invalidate(ALL_SHIFTS_CACHE_KEY)

    # ------------------------------------------------------------------
    # Visits
    # ------------------------------------------------------------------
    async def log_visit_start(self, shift_id: str, location: Location) -> Dict[str, Any]:
        return await self._log_visit("/visits/start", shift_id, location)

    async def log_visit_end(self, shift_id: str, location: Location) -> Dict[str, Any]:
        return await self._log_visit("/visits/end", shift_id, location)

    async def _log_visit(self, path: str, shift_id: str, location: Location) -> Dict[str, Any]:
        payload = {"shiftId": shift_id, "latitude": location.latitude, "longitude": location.longitude}
        data = await self._request("POST", path, json=payload)
        self._invalidate_shift_reads()
        return data

    async def get_shift_visits(
        self,
        shift_id: str,
        *,
        page: int = 1,
        limit: int = 10,
        sort_order: str = "asc",
    ) -> Dict[str, Any]:
        params = {"page": page, "limit": limit, "sortOrder": sort_order}
        return await self._request("GET", f"/visits/shift/{shift_id}", params=params)

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------
    async def health(self) -> Any:
        return await self._request("GET", "/health")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


__all__ = ["ApiClient", "ApiError", "request_priority"]
