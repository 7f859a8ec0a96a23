"""Tests for the concurrent scan pipeline."""

import threading
import time

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from dupfind.config import Settings
from dupfind.dedup import pipeline as pipeline_module
from dupfind.dedup.events import EventStream, GroupCreated, ScanCompleted, ScanFailed
from dupfind.dedup.index import IndexExhaustionError
from dupfind.dedup.pipeline import ScanPipeline
from dupfind.dedup.record import RecordState
from dupfind.walk import Candidate
from tests.helpers.image_factory import make_photo, resized, save_image


def _settings(**overrides):
    values = {"worker_count": 2, "queue_size": 4}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def photo_files(tmp_path):
    """Two copies of each of three photos plus two loners."""
    paths = []
    for seed in (1, 2, 3):
        img = make_photo(seed, size=(400, 300))
        paths.append(save_image(img, tmp_path / f"p{seed}_orig.png"))
        paths.append(save_image(resized(img, 0.6), tmp_path / f"p{seed}_small.jpg", quality=90))
    for seed in (4, 5):
        paths.append(save_image(make_photo(seed, size=(400, 300)), tmp_path / f"loner{seed}.png"))
    return paths


def _wait_for(condition, timeout=10.0):
    deadline = time.monotonic() + timeout
    while not condition():
        assert time.monotonic() < deadline, "condition not reached"
        time.sleep(0.01)


def _partition(groups):
    return {frozenset(path.name for path in (r.path for r in group.records)) for group in groups}


EXPECTED = {
    frozenset({"p1_orig.png", "p1_small.jpg"}),
    frozenset({"p2_orig.png", "p2_small.jpg"}),
    frozenset({"p3_orig.png", "p3_small.jpg"}),
}


class TestScanPipeline:
    def test_groups_copies(self, photo_files):
        pipeline = ScanPipeline(_settings())
        summary = pipeline.run(photo_files)

        assert summary.scanned == 8
        assert summary.fingerprinted == 8
        assert summary.failed == 0
        assert summary.group_count == 3
        assert summary.grouped == 6
        assert not summary.cancelled
        assert _partition(pipeline.engine.groups()) == EXPECTED

    def test_accepts_candidates_with_metadata(self, photo_files):
        candidates = [Candidate(path=p, size=p.stat().st_size, mtime=p.stat().st_mtime) for p in photo_files]
        pipeline = ScanPipeline(_settings())
        pipeline.run(candidates)

        for record in pipeline.engine.records():
            assert record.size is not None
            assert record.mtime is not None
            assert record.width == 400 or record.width == 240

    def test_linear_index_gives_same_partition(self, photo_files):
        pipeline = ScanPipeline(_settings(index_kind="linear"))
        pipeline.run(photo_files)
        assert _partition(pipeline.engine.groups()) == EXPECTED

    @settings(max_examples=5, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(data=st.data())
    def test_partition_independent_of_submission_order(self, photo_files, data):
        order = data.draw(st.permutations(photo_files))
        workers = data.draw(st.integers(min_value=1, max_value=4))
        pipeline = ScanPipeline(_settings(worker_count=workers))
        pipeline.run(order)
        assert _partition(pipeline.engine.groups()) == EXPECTED

    def test_failure_isolation(self, photo_files, tmp_path):
        """One corrupt file among N valid ones: N fingerprinted, one failure."""
        corrupt = tmp_path / "corrupt.jpg"
        corrupt.write_bytes(b"\xff\xd8\xff\xe0 definitely not a jpeg")
        files = photo_files[:4] + [corrupt] + photo_files[4:]

        pipeline = ScanPipeline(_settings())
        summary = pipeline.run(files)

        assert summary.fingerprinted == len(photo_files)
        assert summary.failed == 1
        assert [f.path for f in summary.failures] == [corrupt]
        assert _partition(pipeline.engine.groups()) == EXPECTED

    def test_all_failures_still_complete(self, tmp_path):
        broken = []
        for i in range(5):
            path = tmp_path / f"broken{i}.png"
            path.write_bytes(b"" if i == 0 else b"junk")
            broken.append(path)
        broken.append(tmp_path / "missing.png")

        summary = ScanPipeline(_settings()).run(broken)

        assert summary.group_count == 0
        assert summary.failed == 6
        assert summary.fingerprinted == 0
        assert len(summary.failures) == 6

    def test_unexpected_worker_error_reported(self, photo_files, monkeypatch):
        """A bug in fingerprinting one image is a failure, not a lost record."""
        original = pipeline_module.fingerprint_file
        target = photo_files[0]

        def flaky(path, settings):
            if path == target:
                raise RuntimeError("decoder crashed")
            return original(path, settings)

        monkeypatch.setattr(pipeline_module, "fingerprint_file", flaky)
        pipeline = ScanPipeline(_settings())
        summary = pipeline.run(photo_files)

        assert summary.failed == 1
        assert summary.fingerprinted == len(photo_files) - 1
        assert summary.fingerprinted + summary.failed + summary.abandoned == summary.scanned
        assert [f.path for f in summary.failures] == [target]
        assert "unexpected error: decoder crashed" in summary.failures[0].reason

    def test_nul_byte_path_is_a_failure(self, photo_files):
        summary = ScanPipeline(_settings()).run(photo_files + ["bad\x00name.png"])

        assert summary.failed == 1
        assert summary.fingerprinted == len(photo_files)
        assert summary.failures[0].reason.startswith("cannot read file")

    def test_empty_input(self):
        summary = ScanPipeline(_settings()).run([])
        assert summary.scanned == 0
        assert summary.group_count == 0

    def test_single_scan_per_pipeline(self, photo_files):
        pipeline = ScanPipeline(_settings())
        pipeline.run(photo_files[:2])
        with pytest.raises(RuntimeError):
            pipeline.start(photo_files)

    def test_wait_before_start(self):
        with pytest.raises(RuntimeError):
            ScanPipeline(_settings()).wait()

    def test_independent_pipelines(self, photo_files):
        first = ScanPipeline(_settings())
        second = ScanPipeline(_settings())
        first.run(photo_files[:2])
        second.run(photo_files)

        assert first.summary.scanned == 2
        assert second.summary.scanned == 8
        assert first.engine.group_count == 1


class TestEvents:
    def test_event_stream_pull(self, photo_files, tmp_path):
        corrupt = tmp_path / "bad.png"
        corrupt.write_bytes(b"junk")
        pipeline = ScanPipeline(_settings())
        pipeline.run(photo_files + [corrupt])

        events = list(pipeline.events)
        assert isinstance(events[-1], ScanCompleted)
        assert events[-1].summary == pipeline.summary
        created = [e for e in events if isinstance(e, GroupCreated)]
        assert len(created) == 3
        assert [e.path for e in events if isinstance(e, ScanFailed)] == [corrupt]

    def test_event_stream_push(self, photo_files):
        pipeline = ScanPipeline(_settings())
        received = []
        pipeline.events.subscribe(received.append)
        pipeline.run(photo_files)

        assert isinstance(received[-1], ScanCompleted)
        assert sum(isinstance(e, GroupCreated) for e in received) == 3

    def test_push_only_stream(self, photo_files):
        stream = EventStream(buffered=False)
        received = []
        stream.subscribe(received.append)
        pipeline = ScanPipeline(_settings(), events=stream)
        pipeline.run(photo_files)

        assert isinstance(received[-1], ScanCompleted)
        assert sum(isinstance(e, GroupCreated) for e in received) == 3
        with pytest.raises(RuntimeError):
            stream.poll(timeout=0)

    def test_failing_subscriber_does_not_stop_scan(self, photo_files):
        def broken(event):
            raise RuntimeError("subscriber bug")

        pipeline = ScanPipeline(_settings())
        pipeline.events.subscribe(broken)
        summary = pipeline.run(photo_files)
        assert summary.group_count == 3


class TestCancellation:
    def test_cancel_from_candidate_stream(self, photo_files):
        """Cancelling mid-scan keeps earlier groups intact and queryable."""
        pipeline = ScanPipeline(_settings())

        def candidates():
            for i, path in enumerate(photo_files):
                if i == 4:
                    pipeline.cancel()
                yield path

        summary = pipeline.run(candidates())

        assert summary.cancelled
        assert summary.scanned == 4
        assert summary.fingerprinted + summary.failed + summary.abandoned == summary.scanned
        for group in pipeline.engine.groups():
            assert len(group) >= 2
            for record in group.records:
                assert record.state is RecordState.GROUPED
                assert record.fingerprint is not None
        assert _partition(pipeline.engine.groups()) <= EXPECTED

    def test_queued_work_abandoned(self, photo_files, monkeypatch):
        """Work not started before cancel() is abandoned, never half-reported."""
        release = threading.Event()
        started = threading.Event()
        original = pipeline_module.fingerprint_file

        def slow(path, settings):
            started.set()
            release.wait(timeout=10)
            return original(path, settings)

        monkeypatch.setattr(pipeline_module, "fingerprint_file", slow)
        pipeline = ScanPipeline(_settings(worker_count=1, queue_size=8))
        pipeline.start(photo_files)

        assert started.wait(timeout=10)
        _wait_for(lambda: pipeline.counters.scanned == len(photo_files))
        pipeline.cancel()
        release.set()
        summary = pipeline.wait(timeout=30)

        assert summary is not None
        assert summary.cancelled
        assert summary.fingerprinted >= 1
        assert summary.abandoned >= 1
        assert summary.fingerprinted + summary.failed + summary.abandoned == summary.scanned
        assert pipeline.engine.record_count == summary.fingerprinted + summary.failed


class TestFatalErrors:
    def test_index_exhaustion(self, photo_files):
        pipeline = ScanPipeline(_settings(max_records=3))

        with pytest.raises(IndexExhaustionError) as info:
            pipeline.run(photo_files)

        summary = info.value.summary
        assert summary is not None
        assert summary.cancelled
        assert pipeline.engine.record_count == 3
        assert summary.fingerprinted == 3

    def test_candidate_stream_error_reraised(self, photo_files):
        def candidates():
            yield photo_files[0]
            yield photo_files[1]
            raise RuntimeError("walk exploded")

        pipeline = ScanPipeline(_settings())
        with pytest.raises(RuntimeError, match="walk exploded"):
            pipeline.run(candidates())

        assert pipeline.summary is not None
        assert pipeline.summary.fingerprinted == 2
        assert pipeline.engine.group_count == 1
