from __future__ import annotations

import threading
import time
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from media_gallery.services.preview_queue import (
    PreviewHandle,
    PreviewQueue,
    PreviewSource,
    render_preview,
)


class RecordingGenerator:
    """Stand-in preview job that tracks how many run at once."""

    def __init__(self, delay: float = 0.02) -> None:
        self.delay = delay
        self.active = 0
        self.peak = 0
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, source: PreviewSource) -> PreviewHandle:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.calls.append(source.path)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
        if source.path.endswith(".bad"):
            raise ValueError(f"cannot preview {source.path}")
        return PreviewHandle(source.path.encode())


def _source(name: str, size: int = 100) -> PreviewSource:
    return PreviewSource(path=name, size=size, mime_type="image/jpeg")


def test_at_most_three_previews_run_at_once() -> None:
    generator = RecordingGenerator()
    with PreviewQueue(generate=generator) as queue:
        futures = [queue.request(_source(f"img{i}.jpg")) for i in range(10)]
        payloads = [future.result(timeout=5).data for future in futures]

    assert 1 <= generator.peak <= 3
    assert len(generator.calls) == 10
    assert payloads == [f"img{i}.jpg".encode() for i in range(10)]


def test_batches_start_in_request_order() -> None:
    generator = RecordingGenerator(delay=0.01)
    with PreviewQueue(generate=generator, max_concurrent=2) as queue:
        futures = [queue.request(_source(f"img{i}.jpg")) for i in range(6)]
        for future in futures:
            future.result(timeout=5)

    batches = [set(generator.calls[index:index + 2]) for index in range(0, 6, 2)]
    assert batches == [{"img0.jpg", "img1.jpg"}, {"img2.jpg", "img3.jpg"}, {"img4.jpg", "img5.jpg"}]


def test_cache_hit_skips_the_queue() -> None:
    generator = RecordingGenerator(delay=0)
    with PreviewQueue(generate=generator) as queue:
        first = queue.request(_source("a.jpg")).result(timeout=5)
        again = queue.request(_source("a.jpg"))

        assert again.done()
        assert again.result() is first
        assert queue.cached(_source("a.jpg")) is first
        assert queue.cached(_source("a.jpg", size=101)) is None
        assert queue.pending_count() == 0

    assert generator.calls == ["a.jpg"]


def test_inflight_requests_share_one_job() -> None:
    release = threading.Event()

    def slow(source: PreviewSource) -> PreviewHandle:
        release.wait(timeout=5)
        return PreviewHandle(b"data")

    with PreviewQueue(generate=slow) as queue:
        first = queue.request(_source("a.jpg"))
        second = queue.request(_source("a.jpg"))
        release.set()

        assert first is second
        assert first.result(timeout=5).data == b"data"


def test_one_failure_does_not_affect_the_batch() -> None:
    generator = RecordingGenerator(delay=0)
    with PreviewQueue(generate=generator) as queue:
        good = queue.request(_source("a.jpg"))
        bad = queue.request(_source("b.bad"))
        later = queue.request(_source("c.jpg"))

        assert good.result(timeout=5).data == b"a.jpg"
        with pytest.raises(ValueError):
            bad.result(timeout=5)
        assert later.result(timeout=5).data == b"c.jpg"
        # failures are not cached, a retry runs the job again
        with pytest.raises(ValueError):
            queue.request(_source("b.bad")).result(timeout=5)

    assert generator.calls.count("b.bad") == 2


def test_queues_do_not_share_state() -> None:
    first_gen = RecordingGenerator(delay=0)
    second_gen = RecordingGenerator(delay=0)
    with PreviewQueue(generate=first_gen) as first, PreviewQueue(generate=second_gen) as second:
        first.request(_source("a.jpg")).result(timeout=5)
        second.request(_source("a.jpg")).result(timeout=5)

        assert first.cached(_source("a.jpg")) is not second.cached(_source("a.jpg"))
    assert first_gen.calls == second_gen.calls == ["a.jpg"]


def test_ticket_waits_for_visibility() -> None:
    generator = RecordingGenerator(delay=0)
    with PreviewQueue(generate=generator) as queue:
        ticket = queue.watch(_source("a.jpg"))
        assert not ticket.visible
        assert queue.pending_count() == 0
        assert generator.calls == []

        handle = ticket.mark_visible().result(timeout=5)

        assert ticket.visible
        assert ticket.mark_visible().result() is handle
        assert generator.calls == ["a.jpg"]


def test_discard_keeps_cached_handles_alive() -> None:
    with PreviewQueue(generate=RecordingGenerator(delay=0)) as queue:
        ticket = queue.watch(_source("a.jpg"))
        handle = ticket.mark_visible().result(timeout=5)

        ticket.discard()
        assert not handle.released
        assert queue.is_cached(handle)

        queue.clear()
        assert handle.released
        with pytest.raises(ValueError):
            handle.data


def test_discarded_ticket_never_requests() -> None:
    generator = RecordingGenerator(delay=0)
    with PreviewQueue(generate=generator) as queue:
        ticket = queue.watch(_source("a.jpg"))
        ticket.discard()
        assert ticket.mark_visible() is None
    assert generator.calls == []


def test_released_cache_entry_is_regenerated() -> None:
    generator = RecordingGenerator(delay=0)
    with PreviewQueue(generate=generator) as queue:
        handle = queue.request(_source("a.jpg")).result(timeout=5)
        handle.release()

        fresh = queue.request(_source("a.jpg")).result(timeout=5)

    assert fresh is not handle
    assert generator.calls == ["a.jpg", "a.jpg"]


def test_closed_queue_rejects_requests() -> None:
    queue = PreviewQueue(generate=RecordingGenerator(delay=0))
    handle = queue.request(_source("a.jpg")).result(timeout=5)
    queue.close()

    assert handle.released
    with pytest.raises(RuntimeError):
        queue.request(_source("b.jpg"))


def test_render_preview_produces_small_oriented_jpeg(tmp_path: Path) -> None:
    path = tmp_path / "portrait.jpg"
    exif = Image.Exif()
    exif[274] = 6
    Image.new("RGB", (400, 200), color="green").save(path, format="JPEG", exif=exif.tobytes())

    handle = render_preview(PreviewSource.from_path(path))

    with Image.open(BytesIO(handle.data)) as preview:
        assert preview.format == "JPEG"
        assert preview.size == (32, 64)


def test_source_fingerprint_and_loader() -> None:
    source = PreviewSource(path="/tmp/a.jpg", size=12, mime_type="image/jpeg", loader=lambda: b"bytes")
    assert source.fingerprint == "/tmp/a.jpg_12_image/jpeg"
    assert source.read() == b"bytes"
