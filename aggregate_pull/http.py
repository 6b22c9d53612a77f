"""HTTP transport: typed requests in, success/failure responses out, never raises."""

import logging
import os
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional, Sequence, Tuple
from xml.etree import ElementTree as ET

import httpx

from . import xml_utils
from .exceptions import HttpError
from .jobs import RunnerStatus

logger = logging.getLogger("aggregate_pull")

TEXT = "text"
XML = "xml"
DOWNLOAD = "download"


@dataclass(frozen=True)
class Request:
    method: str
    url: str
    params: Tuple[Tuple[str, str], ...] = ()
    body_type: str = TEXT
    target: Optional[str] = None
    mapper: Optional[Callable[[Any], Any]] = None

    @classmethod
    def get(cls, url: str, params: Sequence[Tuple[str, str]] = ()) -> "Request":
        return cls("GET", url, tuple(params))

    def as_xml(self) -> "Request":
        return replace(self, body_type=XML)

    def download_to(self, target: str) -> "Request":
        return replace(self, body_type=DOWNLOAD, target=target)

    def with_mapper(self, mapper: Callable[[Any], Any]) -> "Request":
        return replace(self, mapper=mapper)

    def map_body(self, body):
        return self.mapper(body) if self.mapper is not None else body


@dataclass
class Response:
    url: str
    status_code: int
    reason: str = ""
    body: Any = None
    failed: bool = field(default=False, repr=False)

    @classmethod
    def success(cls, url: str, status_code: int, body: Any) -> "Response":
        return cls(url, status_code, "OK", body)

    @classmethod
    def failure(cls, url: str, status_code: int, reason: str) -> "Response":
        return cls(url, status_code, reason, None, failed=True)

    def is_success(self) -> bool:
        return not self.failed and 200 <= self.status_code < 300

    def is_redirection(self) -> bool:
        return 300 <= self.status_code < 400

    def is_unauthorized(self) -> bool:
        return self.status_code == 401

    def is_not_found(self) -> bool:
        return self.status_code == 404

    def get(self):
        if not self.is_success():
            raise HttpError(self)
        return self.body

    def or_else(self, default):
        return self.body if self.is_success() else default


class Http:
    def __init__(self, max_connections: int = 8, timeout: int = 120,
                 user_agent: str = "AggregatePull/1.0",
                 credentials: Optional[Tuple[str, str]] = None,
                 max_retries: int = 3, backoff_factor: int = 2,
                 transport: Optional[httpx.BaseTransport] = None):
        self.max_connections = max_connections
        self.timeout = timeout
        self.user_agent = user_agent
        self.credentials = credentials
        self.max_retries = max(1, max_retries)
        self.backoff_factor = backoff_factor
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.timeout, connect=30),
                limits=httpx.Limits(
                    max_connections=self.max_connections,
                    max_keepalive_connections=self.max_connections,
                ),
                follow_redirects=True,
                headers={"User-Agent": self.user_agent, "X-OpenRosa-Version": "1.0"},
                auth=httpx.DigestAuth(*self.credentials) if self.credentials else None,
                transport=self._transport,
            )
        return self._client

    def close(self):
        if self._client and not self._client.is_closed:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def execute(self, request: Request, runner_status: Optional[RunnerStatus] = None) -> Response:
        """Run `request`, retrying transport errors and 5xx answers until `runner_status` is cancelled."""
        response = None
        for attempt in range(self.max_retries):
            response = self._execute_once(request)
            if response.is_success() or not self._retryable(response):
                return response
            if runner_status is not None and runner_status.is_cancelled():
                logger.info(f"Not retrying {request.url}: cancelled")
                return response
            if attempt + 1 < self.max_retries:
                wait = self.backoff_factor ** attempt
                logger.warning(
                    f"Retry {attempt + 1}/{self.max_retries} for {request.url}: "
                    f"{response.status_code} {response.reason} (wait {wait}s)"
                )
                time.sleep(wait)
        return response

    @staticmethod
    def _retryable(response: Response) -> bool:
        return response.status_code == 0 or response.status_code >= 500

    def _execute_once(self, request: Request) -> Response:
        logger.debug(f"{request.method} {request.url} {dict(request.params)}")
        try:
            if request.body_type == DOWNLOAD:
                return self._download(request)

            resp = self.client.request(
                request.method, request.url,
                params=list(request.params) or None,
            )
            if resp.is_error:
                return Response.failure(str(resp.url), resp.status_code, resp.reason_phrase)
            if resp.is_redirect:
                return Response.failure(str(resp.url), resp.status_code, "Redirection detected")

            try:
                body = xml_utils.parse(resp.content) if request.body_type == XML else resp.text
                return Response.success(str(resp.url), resp.status_code, request.map_body(body))
            except (ET.ParseError, ValueError) as e:
                # Keep the status so malformed answers are not retried
                return Response.failure(str(resp.url), resp.status_code, f"Malformed response: {e}")

        except httpx.HTTPError as e:
            return Response.failure(request.url, 0, f"{type(e).__name__}: {e}")
        except OSError as e:
            return Response.failure(request.url, 0, f"Can't write {request.target}: {e}")

    def _download(self, request: Request) -> Response:
        """Stream the body to `request.target`, replacing it only once complete."""
        os.makedirs(os.path.dirname(request.target) or ".", exist_ok=True)
        partial = request.target + ".part"
        size = 0

        with self.client.stream(request.method, request.url) as resp:
            if resp.is_error:
                return Response.failure(str(resp.url), resp.status_code, resp.reason_phrase)
            try:
                with open(partial, "wb") as f:
                    for chunk in resp.iter_bytes(chunk_size=65536):
                        f.write(chunk)
                        size += len(chunk)
                os.replace(partial, request.target)
                logger.debug(f"Downloaded {size:,} bytes to {request.target}")
            finally:
                if os.path.exists(partial):
                    os.remove(partial)

        return Response.success(str(resp.url), resp.status_code, request.target)
