"""
In-memory hub for pipeline tests.

FakeHub stores file contents per (repo_id, filename) and hands out a resolver
and a transport that serve them, so the download service can run end to end
without network access. Knobs on FakeTransport simulate the failure modes the
transfer engine has to handle.
"""

import hashlib
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from hubcache.model.metadata import AssetMetadata, ResolutionErrorKind, ResolveResult
from hubcache.utils.download.http_client import FetchResult
from hubcache.utils.hub_urls import resolve_url

COMMIT_A = "a" * 40
COMMIT_B = "b" * 40


@dataclass
class HubFile:
    content: bytes
    commit_id: Optional[str] = COMMIT_A
    served: Optional[bytes] = None  # What the transport actually sends, if different

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.content).hexdigest()


class FakeResolver:
    """Resolver returning metadata straight from the FakeHub."""

    def __init__(self, hub: "FakeHub"):
        self.hub = hub
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], ResolutionErrorKind] = {}

    def get_method_name(self) -> str:
        return "fake"

    def resolve(self, repo_id: str, filename: str) -> ResolveResult:
        self.calls.append((repo_id, filename))
        kind = self.failures.get((repo_id, filename))
        if kind is not None:
            return ResolveResult.failure(kind, f"simulated {kind.value}")

        entry = self.hub.files.get((repo_id, filename))
        if entry is None:
            return ResolveResult.failure(ResolutionErrorKind.NOT_FOUND, f"{filename} not in {repo_id}")

        return ResolveResult.ok(
            AssetMetadata.from_hub_fields(size=len(entry.content), sha256=entry.sha256, commit_id=entry.commit_id)
        )


class FakeTransport:
    """
    Stand-in for HttpClient.fetch.

    Attributes:
        chunk_size: Bytes per simulated network read
        ignore_range: Answer resumed requests with 200 and the full body
        fail_after: Drop the connection once this many bytes were sent
        fail_after_by_url: Per-URL override of fail_after
        on_chunk: Hook called with the running byte count after each chunk
    """

    def __init__(self, hub: "FakeHub", chunk_size: int = 4):
        self.hub = hub
        self.chunk_size = chunk_size
        self.ignore_range = False
        self.fail_after: Optional[int] = None
        self.fail_after_by_url: Dict[str, int] = {}
        self.on_chunk: Optional[Callable[[int], None]] = None
        self.requests: List[Tuple[str, int]] = []

    def fetch(self, url, resume_offset, sink, on_bytes=None, cancel_predicate=None) -> FetchResult:
        self.requests.append((url, resume_offset))
        body = self.hub.served_bytes(url)
        if body is None:
            return FetchResult(ok=False, status_code=404, error="HTTP 404 - Not Found")

        restarted = False
        if resume_offset > 0 and not self.ignore_range:
            if resume_offset >= len(body):
                return FetchResult(ok=False, status_code=416, error="HTTP 416 - Range Not Satisfiable")
            status = 206
            body = body[resume_offset:]
        else:
            status = 200
            if resume_offset > 0:
                sink.restart()
                restarted = True

        fail_after = self.fail_after_by_url.get(url, self.fail_after)
        cur_total = len(body)
        received = 0
        if on_bytes:
            on_bytes(cur_total, received)

        for start in range(0, len(body), self.chunk_size):
            if cancel_predicate and cancel_predicate():
                return FetchResult(
                    ok=False, status_code=status, bytes_received=received,
                    restarted=restarted, cancelled=True, error="cancelled",
                )
            if fail_after is not None and received >= fail_after:
                return FetchResult(
                    ok=False, status_code=status, bytes_received=received,
                    restarted=restarted, error="Transfer interrupted: connection reset",
                )
            piece = body[start:start + self.chunk_size]
            sink.write_chunk(piece)
            received += len(piece)
            if on_bytes:
                on_bytes(cur_total, received)
            if self.on_chunk:
                self.on_chunk(received)

        return FetchResult(ok=True, status_code=status, bytes_received=received, restarted=restarted)


class FakeHub:
    """Repository contents keyed by (repo_id, filename)."""

    def __init__(self):
        self.files: Dict[Tuple[str, str], HubFile] = {}
        self._urls: Dict[str, Tuple[str, str]] = {}
        self.resolver = FakeResolver(self)
        self.transport = FakeTransport(self)

    def add_file(
        self,
        repo_id: str,
        filename: str,
        content: bytes,
        commit_id: Optional[str] = COMMIT_A,
        served: Optional[bytes] = None,
    ) -> HubFile:
        entry = HubFile(content=content, commit_id=commit_id, served=served)
        self.files[(repo_id, filename)] = entry
        self._urls[resolve_url(repo_id, filename)] = (repo_id, filename)
        return entry

    def served_bytes(self, url: str) -> Optional[bytes]:
        key = self._urls.get(url)
        if key is None:
            return None
        entry = self.files[key]
        return entry.served if entry.served is not None else entry.content
