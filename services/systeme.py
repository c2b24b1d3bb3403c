"""Systeme.io REST API gateway.

Systeme accounts do not agree on where the public API lives: some serve it
under ``/api``, some under ``/api/public``, some at the host root, and the
host itself differs between ``api.systeme.io`` and ``systeme.io``.  Some
deployments also reject a request that carries an ``X-API-Key`` they do not
expect.  Rather than guess, every logical call is expanded into an ordered
list of route variants (host x path spelling x with/without key) and tried
until one answers with a 2xx.

The variant table is built by pure functions (``path_variants`` and
``build_route_variants``) so it can be inspected and tested on its own; the
calling loop in ``SystemeGateway.call`` only classifies outcomes.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, NamedTuple

import requests

from api.exceptions import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_HOSTS = ("https://api.systeme.io", "https://systeme.io")
API_KEY_HEADER = "X-API-Key"

_API_PREFIX = "/api/"
_PUBLIC_PREFIX = "/api/public/"


class RouteVariant(NamedTuple):
    """One concrete way of issuing a logical call."""

    url: str
    with_key: bool


class GatewayResponse(NamedTuple):
    """Result of a logical call.

    ``not_found`` is only ever True when the caller passed
    ``tolerate_not_found`` and every variant answered 404.
    """

    status: int
    data: Any
    not_found: bool = False


# ---------------------------------------------------------------------------
# Variant table
# ---------------------------------------------------------------------------


def path_variants(path: str) -> list[str]:
    """Return the candidate spellings of *path*, most likely first."""
    if not path.startswith("/"):
        path = "/" + path

    if path.startswith(_PUBLIC_PREFIX):
        rest = path[len(_PUBLIC_PREFIX):]
        candidates = [path, _API_PREFIX + rest, "/" + rest]
    elif path.startswith(_API_PREFIX):
        rest = path[len(_API_PREFIX):]
        candidates = [path, _PUBLIC_PREFIX + rest, "/" + rest]
    else:
        rest = path[1:]
        candidates = [path, _API_PREFIX + rest, _PUBLIC_PREFIX + rest]

    seen: list[str] = []
    for candidate in candidates:
        if candidate not in seen:
            seen.append(candidate)
    return seen


def build_route_variants(
    path: str,
    hosts: tuple[str, ...] | list[str],
    with_key: bool = True,
) -> list[RouteVariant]:
    """Expand *path* into the full ordered (url, auth) matrix.

    Without a key to send, the with-key and without-key requests are
    identical, so each URL appears once.
    """
    auth_modes = (True, False) if with_key else (False,)
    variants = []
    for host in hosts:
        base = host.rstrip("/")
        for spelling in path_variants(path):
            for mode in auth_modes:
                variants.append(RouteVariant(base + spelling, mode))
    return variants


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def parse_body(text: str) -> Any:
    """Parse a response body, keeping unparseable text as ``{"raw": text}``."""
    if not text:
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


def response_items(data: Any) -> list:
    """Return the records of a listing, paginated (``items``) or bare."""
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return data["items"]
    if isinstance(data, list):
        return data
    return []


def positive_id(value: Any) -> int | None:
    """Return *value* as a positive int ID, or None."""
    if isinstance(value, bool):
        return None
    try:
        result = int(value)
    except (TypeError, ValueError):
        return None
    return result if result > 0 else None


def retry_delay(response: requests.Response | None, default: float, cap: float) -> float:
    """Return the wait before retrying, honouring a numeric Retry-After."""
    if response is not None:
        hint = response.headers.get("Retry-After")
        if hint:
            try:
                return max(0.0, min(float(hint), cap))
            except ValueError:
                pass
    return default


def _is_transient(status: int | None) -> bool:
    return status is None or status == 429 or status >= 500


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class SystemeGateway:
    """Issue Systeme API calls across every plausible route variant."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "",
        timeout: float = 15.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        max_retry_delay: float = 10.0,
        deadline: float = 0.0,
    ) -> None:
        self.api_key = api_key
        self.hosts = (base_url,) if base_url else DEFAULT_HOSTS
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        # overall budget per logical call in seconds; 0 disables it
        self.deadline = max(0.0, deadline)
        self.clock = time.monotonic

    @classmethod
    def from_settings(cls, settings) -> SystemeGateway:
        return cls(
            api_key=settings.systeme_api_key,
            base_url=settings.systeme_base_url,
            timeout=settings.systeme_timeout,
            max_retries=settings.systeme_max_retries,
            retry_delay=settings.systeme_retry_delay,
            max_retry_delay=settings.systeme_max_retry_delay,
            deadline=settings.systeme_call_deadline,
        )

    def _headers(self, with_key: bool) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if with_key and self.api_key:
            headers[API_KEY_HEADER] = self.api_key
        return headers

    def _time_left(self, stop_at: float | None) -> float | None:
        return None if stop_at is None else stop_at - self.clock()

    def _send(
        self,
        variant: RouteVariant,
        method: str,
        json_body: Any,
        params: dict | None,
        timeout: float,
    ) -> requests.Response | None:
        """Send one request; None means no response (timeout, connection error)."""
        try:
            return requests.request(
                method,
                variant.url,
                json=json_body,
                params=params,
                headers=self._headers(variant.with_key),
                timeout=timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            logger.warning("Systeme %s %s failed: %s", method, variant.url, exc)
            return None

    def call(
        self,
        path: str,
        method: str = "GET",
        *,
        json: Any = None,
        params: dict | None = None,
        tolerate_not_found: bool = False,
    ) -> GatewayResponse:
        """Perform a logical Systeme call.

        Returns the first 2xx response.  Transient failures (429, 5xx, no
        response) are retried on the same variant before moving on; 404 and
        other 4xx move straight to the next variant.  When ``deadline`` is
        set, no request starts and no retry sleeps past it, and each
        request's timeout is shortened to the time left.

        Raises:
            UpstreamError: Every variant failed or the deadline ran out.  A
                non-404 client error is preferred over a transient failure
                (running out of time counts as one), which is preferred over
                a 404.
        """
        method = method.upper()
        client_error: UpstreamError | None = None
        transient_error: UpstreamError | None = None
        not_found: GatewayResponse | None = None
        stop_at = self.clock() + self.deadline if self.deadline else None
        expired = False

        variants = build_route_variants(path, self.hosts, with_key=bool(self.api_key))
        for index, variant in enumerate(variants):
            for attempt in range(self.max_retries + 1):
                left = self._time_left(stop_at)
                if left is not None and left <= 0:
                    expired = True
                    break
                timeout = self.timeout if left is None else min(self.timeout, left)

                response = self._send(variant, method, json, params, timeout)
                status = response.status_code if response is not None else None
                data = parse_body(response.text) if response is not None else None

                if status is not None and 200 <= status < 300:
                    if index:
                        logger.info(
                            "Systeme %s %s answered via %s (key=%s)",
                            method, path, variant.url, variant.with_key,
                        )
                    return GatewayResponse(status, data)

                if not _is_transient(status):
                    break

                transient_error = UpstreamError(
                    f"Systeme {method} {path} error: {status or 'no response'}",
                    status=status,
                    body=data,
                )
                if attempt < self.max_retries:
                    delay = retry_delay(response, self.retry_delay, self.max_retry_delay)
                    left = self._time_left(stop_at)
                    if left is not None and delay >= left:
                        expired = True
                        break
                    logger.warning(
                        "Systeme %s %s returned %s, retrying in %.1fs",
                        method, variant.url, status or "no response", delay,
                    )
                    time.sleep(delay)

            if expired:
                break

            if status == 404:
                logger.debug("Systeme %s %s returned 404, trying next variant", method, variant.url)
                if not_found is None:
                    not_found = GatewayResponse(404, data, not_found=True)
            elif status is not None and not _is_transient(status):
                logger.warning("Systeme %s %s returned %s: %s", method, variant.url, status, data)
                if client_error is None:
                    client_error = UpstreamError(
                        f"Systeme {method} {path} error: {status}", status=status, body=data,
                    )

        if expired:
            logger.warning("Systeme %s %s stopped after the %.1fs deadline", method, path, self.deadline)
            if transient_error is None:
                transient_error = UpstreamError(f"Systeme {method} {path} error: deadline exceeded")

        if client_error is not None:
            logger.error("Systeme %s %s failed: %s %s", method, path, client_error.status, client_error.body)
            raise client_error
        if transient_error is not None:
            logger.error("Systeme %s %s unavailable: %s", method, path, transient_error)
            raise transient_error
        if tolerate_not_found and not_found is not None:
            return not_found
        body = not_found.data if not_found is not None else None
        logger.error("Systeme %s %s not found on any route variant", method, path)
        raise UpstreamError(f"Systeme {method} {path} error: 404", status=404, body=body)
