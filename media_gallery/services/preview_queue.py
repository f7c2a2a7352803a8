"""
Bounded, cached batch scheduler for instant preview thumbnails of files that are
about to be uploaded.

Jobs run in FIFO batches of at most `max_concurrent`; a batch finishes (every
job succeeded or failed on its own) before a short pause and the next batch.
Results are cached per content fingerprint (path, size, declared type); cache
hits never touch the queue. Each queue owns its cache and counters, so
independent instances do not interfere.
"""

from __future__ import annotations

import logging
import mimetypes
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Callable

from media_gallery.utils.imaging import RasterCodec

LOGGER = logging.getLogger(__name__)

MAX_CONCURRENT = 3
PAUSE_SECONDS = 0.01
PREVIEW_EDGE = 64
PREVIEW_QUALITY = 70


@dataclass(frozen=True)
class PreviewSource:
    """A candidate file as seen before upload."""

    path: str
    size: int
    mime_type: str
    loader: Callable[[], bytes] | None = None

    @classmethod
    def from_path(cls, path: Path, mime_type: str | None = None) -> "PreviewSource":
        path = Path(path)
        guessed = mime_type or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(path=str(path), size=path.stat().st_size, mime_type=guessed)

    @property
    def fingerprint(self) -> str:
        return f"{self.path}_{self.size}_{self.mime_type}"

    def read(self) -> bytes:
        if self.loader is not None:
            return self.loader()
        return Path(self.path).read_bytes()


class PreviewHandle:
    """Memory-backed preview image; release it once nothing displays it."""

    def __init__(self, data: bytes, mime_type: str = "image/jpeg") -> None:
        self.mime_type = mime_type
        self._buffer: BytesIO | None = BytesIO(data)

    @property
    def released(self) -> bool:
        return self._buffer is None

    @property
    def data(self) -> bytes:
        if self._buffer is None:
            raise ValueError("Preview handle already released")
        return self._buffer.getvalue()

    def release(self) -> None:
        if self._buffer is not None:
            self._buffer.close()
            self._buffer = None


def render_preview(
    source: PreviewSource,
    codec: RasterCodec | None = None,
    max_edge: int = PREVIEW_EDGE,
    quality: int = PREVIEW_QUALITY,
) -> PreviewHandle:
    """Oriented, low-fidelity JPEG preview."""
    codec = codec or RasterCodec()
    image = codec.decode_bytes(source.read())
    oriented = codec.orient(image, codec.read_orientation(image))
    small = codec.fit_inside(oriented, max_edge)
    return PreviewHandle(codec.encode_lossy(small, quality, "jpeg"))


@dataclass
class _Job:
    source: PreviewSource
    future: Future


class PreviewQueue:
    """At most `max_concurrent` previews in flight, processed in FIFO batches."""

    def __init__(
        self,
        generate: Callable[[PreviewSource], PreviewHandle] | None = None,
        max_concurrent: int = MAX_CONCURRENT,
        pause_seconds: float = PAUSE_SECONDS,
    ) -> None:
        self._generate = generate or render_preview
        self.max_concurrent = max(1, max_concurrent)
        self.pause_seconds = pause_seconds
        self._executor = ThreadPoolExecutor(max_workers=self.max_concurrent, thread_name_prefix="preview")
        self._pending: deque[_Job] = deque()
        self._inflight: dict[str, Future] = {}
        self._cache: dict[str, PreviewHandle] = {}
        self._lock = threading.Lock()
        self._dispatcher: threading.Thread | None = None
        self._closed = False

    def request(self, source: PreviewSource) -> Future:
        """Future resolving to a PreviewHandle; cache hits resolve immediately."""
        key = source.fingerprint
        with self._lock:
            if self._closed:
                raise RuntimeError("Preview queue is closed")
            cached = self._cache.get(key)
            if cached is not None and not cached.released:
                done: Future = Future()
                done.set_result(cached)
                return done
            self._cache.pop(key, None)
            existing = self._inflight.get(key)
            if existing is not None:
                return existing
            future: Future = Future()
            self._inflight[key] = future
            self._pending.append(_Job(source=source, future=future))
            if self._dispatcher is None:
                self._dispatcher = threading.Thread(target=self._drain, name="preview-dispatch", daemon=True)
                self._dispatcher.start()
        return future

    def watch(self, source: PreviewSource) -> "PreviewTicket":
        """Ticket that enqueues only once its consumer becomes visible."""
        return PreviewTicket(self, source)

    def cached(self, source: PreviewSource) -> PreviewHandle | None:
        with self._lock:
            handle = self._cache.get(source.fingerprint)
        return handle if handle is not None and not handle.released else None

    def is_cached(self, handle: PreviewHandle) -> bool:
        with self._lock:
            return any(entry is handle for entry in self._cache.values())

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def clear(self) -> None:
        """Drop and release every cached handle."""
        with self._lock:
            handles = list(self._cache.values())
            self._cache.clear()
        for handle in handles:
            handle.release()

    def close(self, wait_for_pending: bool = True) -> None:
        with self._lock:
            self._closed = True
            dispatcher = self._dispatcher
            if not wait_for_pending:
                while self._pending:
                    job = self._pending.popleft()
                    self._inflight.pop(job.source.fingerprint, None)
                    job.future.cancel()
        if dispatcher is not None:
            dispatcher.join()
        self._executor.shutdown(wait=True)
        self.clear()

    def __enter__(self) -> "PreviewQueue":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._pending:
                    self._dispatcher = None
                    return
                batch = [self._pending.popleft() for _ in range(min(self.max_concurrent, len(self._pending)))]
            futures = [self._executor.submit(self._run, job) for job in batch]
            wait(futures)
            time.sleep(self.pause_seconds)

    def _run(self, job: _Job) -> None:
        key = job.source.fingerprint
        try:
            handle = self._generate(job.source)
        except Exception as exc:
            LOGGER.warning("Preview for %s failed: %s", job.source.path, exc)
            with self._lock:
                self._inflight.pop(key, None)
            job.future.set_exception(exc)
            return
        with self._lock:
            replaced = self._cache.get(key)
            self._cache[key] = handle
            self._inflight.pop(key, None)
        if replaced is not None and replaced is not handle:
            replaced.release()
        job.future.set_result(handle)


class PreviewTicket:
    """Visibility-gated request for one consumer."""

    def __init__(self, queue: PreviewQueue, source: PreviewSource) -> None:
        self.queue = queue
        self.source = source
        self.future: Future | None = None
        self._discarded = False

    @property
    def visible(self) -> bool:
        return self.future is not None

    def mark_visible(self) -> Future | None:
        if self.future is None and not self._discarded:
            self.future = self.queue.request(self.source)
            self.future.add_done_callback(self._on_done)
        return self.future

    def discard(self) -> None:
        """Consumer went away: release the result unless the cache still holds it."""
        self._discarded = True
        if self.future is not None and self.future.done():
            self._release_if_orphaned(self.future)

    def _on_done(self, future: Future) -> None:
        if self._discarded:
            self._release_if_orphaned(future)

    def _release_if_orphaned(self, future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        handle = future.result()
        if not self.queue.is_cached(handle):
            handle.release()
