"""
HTTP Client with configurable timeout and cancellation support.

Provides clean HTTP abstraction for GET requests with Range headers,
streaming responses, JSON POSTs for metadata lookups, and the single-attempt
fetch-into-sink operation the transfer engine relies on.
"""

import http.client
import json
import logging
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, Optional, Tuple

import certifi

from hubcache.common.constants import DEFAULT_CHUNK_SIZE, DEFAULT_TIMEOUT, DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)


def _create_ssl_context():
    """Create SSL context with certifi certificates (macOS Python lacks default CA certs)."""
    context = ssl.create_default_context(cafile=certifi.where())
    logger.debug("Using certifi CA bundle for SSL: %s", certifi.where())
    return context


_SSL_CONTEXT = _create_ssl_context()

# Status codes worth another attempt; everything else in 4xx is final
TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}


@dataclass
class HttpResponse:
    """HTTP response with content iterator."""

    status_code: int
    content_length: Optional[int]
    headers: Dict[str, str]
    stream: Iterator[bytes]
    _raw: object = field(default=None, repr=False)

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    def close(self):
        if self._raw is not None and hasattr(self._raw, "close"):
            self._raw.close()


@dataclass
class FetchResult:
    """Result of one fetch attempt into a sink."""

    ok: bool
    status_code: Optional[int] = None
    bytes_received: int = 0
    restarted: bool = False
    cancelled: bool = False
    error: Optional[str] = None


def is_transient_error(exc: Exception) -> bool:
    """Return True for network failures worth retrying (connection errors, 5xx, 429)."""
    if isinstance(exc, urllib.error.HTTPError):
        return exc.code in TRANSIENT_STATUS_CODES
    return isinstance(exc, (urllib.error.URLError, http.client.HTTPException, TimeoutError, ConnectionError))


class HttpClient:
    """HTTP client with configurable timeout and headers."""

    def __init__(
        self,
        timeout: int = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        token: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """
        Initialize HTTP client.

        Args:
            timeout: Request timeout in seconds
            user_agent: User-Agent header value
            token: Optional bearer token for private repositories
            chunk_size: Read size for streamed bodies
        """
        self.timeout = timeout
        self.user_agent = user_agent
        self.token = token
        self.chunk_size = chunk_size

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra:
            headers.update(extra)
        return headers

    def _open(self, req: urllib.request.Request):
        return urllib.request.urlopen(req, timeout=self.timeout, context=_SSL_CONTEXT)

    def get(self, url: str, start_byte: int = 0, cancel_token=None) -> HttpResponse:
        """
        Execute GET request with optional Range header. Redirects are followed.

        Args:
            url: URL to fetch
            start_byte: Starting byte for Range header (0 = no range)
            cancel_token: Optional CancelToken (or anything with is_cancelled())

        Returns:
            HttpResponse with streaming content

        Raises:
            urllib.error.URLError: Network failure
            urllib.error.HTTPError: HTTP error response
            InterruptedError: Download cancelled (raised while iterating the stream)
        """
        extra = {"Range": f"bytes={start_byte}-"} if start_byte > 0 else None
        req = urllib.request.Request(url, headers=self._headers(extra))

        try:
            response = self._open(req)
        except urllib.error.URLError as e:
            logger.error(f"HTTP request failed: {e}")
            raise

        content_length_str = response.getheader("Content-Length")
        content_length = int(content_length_str) if content_length_str else None

        return HttpResponse(
            status_code=response.getcode(),
            content_length=content_length,
            headers=dict(response.headers),
            stream=self._iter_content(response, cancel_token),
            _raw=response,
        )

    def get_bytes(self, url: str) -> Tuple[bytes, Dict[str, str]]:
        """
        GET a small document and return (body, headers).

        Raises:
            urllib.error.URLError: Network failure
            urllib.error.HTTPError: HTTP error response
        """
        req = urllib.request.Request(url, headers=self._headers())
        with self._open(req) as response:
            return response.read(), dict(response.headers)

    def post_json(self, url: str, payload: dict) -> Tuple[bytes, Dict[str, str]]:
        """
        POST a JSON payload and return (body, headers).

        Raises:
            urllib.error.URLError: Network failure
            urllib.error.HTTPError: HTTP error response
        """
        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(
            url,
            data=data,
            headers=self._headers({"Content-Type": "application/json", "Accept": "application/json"}),
            method="POST",
        )
        with self._open(req) as response:
            return response.read(), dict(response.headers)

    def fetch(
        self,
        url: str,
        resume_offset: int,
        sink,
        on_bytes: Optional[Callable[[int, int], None]] = None,
        cancel_predicate: Optional[Callable[[], bool]] = None,
    ) -> FetchResult:
        """
        Stream a URL into a sink in one attempt, without retrying.

        `on_bytes(cur_total, cur_now)` reports the size announced for this
        response and the bytes received so far in this response. When the
        server ignores the Range request and answers with the whole body, the
        sink is restarted from byte 0 instead of appending a second copy.

        Args:
            url: URL to fetch
            resume_offset: Byte offset to request from (0 = whole file)
            sink: Object with write_chunk(bytes) and restart()
            on_bytes: Optional callback(cur_total, cur_now)
            cancel_predicate: Optional callable polled before every chunk

        Returns:
            FetchResult (never raises for network errors or cancellation;
            sink write failures propagate)
        """
        cancel_token = _PredicateToken(cancel_predicate) if cancel_predicate else None
        try:
            response = self.get(url, start_byte=resume_offset, cancel_token=cancel_token)
        except urllib.error.HTTPError as e:
            return FetchResult(ok=False, status_code=e.code, error=f"HTTP {e.code} - {e.reason}")
        except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
            return FetchResult(ok=False, error=f"Request failed: {e}")

        restarted = False
        received = 0
        try:
            if resume_offset > 0 and response.status_code != 206:
                logger.warning("Server does not support resume, starting from beginning")
                sink.restart()
                restarted = True

            cur_total = response.content_length or 0
            if on_bytes:
                on_bytes(cur_total, received)

            for chunk in response.stream:
                sink.write_chunk(chunk)
                received += len(chunk)
                if on_bytes:
                    on_bytes(cur_total, received)
        except InterruptedError:
            logger.info("Download cancelled by user")
            return FetchResult(
                ok=False, status_code=response.status_code, bytes_received=received,
                restarted=restarted, cancelled=True, error="cancelled",
            )
        except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
            logger.error(f"Transfer interrupted after {received} bytes: {e}")
            return FetchResult(
                ok=False, status_code=response.status_code, bytes_received=received,
                restarted=restarted, error=f"Transfer interrupted: {e}",
            )
        finally:
            response.close()

        return FetchResult(
            ok=True, status_code=response.status_code, bytes_received=received, restarted=restarted
        )

    def _iter_content(self, response, cancel_token, chunk_size: Optional[int] = None) -> Iterator[bytes]:
        """
        Iterate response content in chunks with cancellation.

        Args:
            response: urllib response object
            cancel_token: Optional CancelToken
            chunk_size: Chunk size in bytes

        Yields:
            Chunks of bytes

        Raises:
            InterruptedError: Download cancelled
        """
        chunk_size = chunk_size or self.chunk_size
        while True:
            if cancel_token and cancel_token.is_cancelled():
                raise InterruptedError("Download cancelled by user")

            chunk = response.read(chunk_size)
            if not chunk:
                break
            yield chunk


class _PredicateToken:
    """Adapts a plain predicate to the is_cancelled() protocol."""

    def __init__(self, predicate: Callable[[], bool]):
        self._predicate = predicate

    def is_cancelled(self) -> bool:
        return bool(self._predicate())
