"""アップロードパイプラインのテスト"""
import threading
import time

import pytest

from conftest import FlakyTransport, RecordingTransport
from funnel import run_pipeline
from funnel.core.pipeline import InFlightCounter, UploadPipeline, calculate_backoff_delay
from funnel.core.uploader import ObjectUploader
from funnel.errors import (
    EnumerationError,
    InvalidConcurrencyError,
    JobsFailedError,
    MultiPathWatchUnsupportedError,
    NoPathsProvidedError,
    PipelineCancelledError,
)
from funnel.models.config import PipelineOptions
from funnel.models.job import JobOutcome
from funnel.utils.key_template import compile_template


def run(paths, transport, **options):
    events = []
    options.setdefault("concurrency", 4)
    result = run_pipeline(
        [str(p) for p in paths],
        watch=options.pop("watch", False),
        delete_after_upload=options.pop("delete_after_upload", False),
        concurrency=options.pop("concurrency"),
        key_template_text=options.pop("key_template_text", "{{ filePath }}"),
        transport=transport,
        bucket="some-cool-bucket",
        on_event=events.append,
        **options,
    )
    return result, events


def test_single_file_upload(transport, sample_file):
    """1ファイルで completed イベントが1件、キーはテンプレートの結果"""
    result, events = run([sample_file], transport, key_template_text="uploads/{{ fileName }}")

    assert result.enqueued == result.completed == 1
    assert result.failed == 0
    assert [e.outcome for e in events] == [JobOutcome.COMPLETED]
    assert events[0].key == "uploads/somefile.txt"
    assert transport.calls == [("some-cool-bucket", "uploads/somefile.txt")]
    assert sample_file.exists()


def test_directory_upload(transport, sample_dir):
    result, events = run([sample_dir], transport)

    assert result.completed == 2
    assert sorted(e.path for e in events) == sorted([
        str(sample_dir / "a.txt"), str(sample_dir / "b.log"),
    ])
    assert str(sample_dir) not in [e.path for e in events]


def test_retry_exhaustion(sample_file):
    """常に失敗する場合、エラーがちょうど5件たまってから failed になる"""
    transport = FlakyTransport(failures=-1)

    result, events = run([sample_file], transport)

    assert result.completed == 0
    assert result.failed == 1
    assert len(events) == 1
    assert events[0].outcome is JobOutcome.FAILED
    assert len(events[0].errors) == 5
    assert transport.attempts[str(sample_file)] == 5


def test_retry_recovery(sample_file):
    transport = FlakyTransport(failures=2)

    result, events = run([sample_file], transport)

    assert result.completed == 1
    assert result.failed == 0
    assert len(events) == 1
    assert events[0].outcome is JobOutcome.COMPLETED
    assert len(events[0].errors) == 2
    assert transport.attempts[str(sample_file)] == 3


def test_custom_max_attempts(sample_file):
    transport = FlakyTransport(failures=-1)

    result, events = run([sample_file], transport, max_attempts=2)

    assert result.failed == 1
    assert len(events[0].errors) == 2


def test_retry_with_backoff(sample_file):
    transport = FlakyTransport(failures=1)

    result, events = run(
        [sample_file], transport, retry_backoff_seconds=0.01, retry_backoff_max_seconds=0.05
    )

    assert result.completed == 1
    assert len(events[0].errors) == 1


def test_empty_input_rejected(transport):
    with pytest.raises(NoPathsProvidedError):
        run([], transport)
    assert transport.calls == []


@pytest.mark.parametrize("concurrency", [0, -1, 101])
def test_invalid_concurrency_rejected(transport, sample_file, concurrency):
    with pytest.raises(InvalidConcurrencyError):
        run([sample_file], transport, concurrency=concurrency)
    assert transport.calls == []


@pytest.mark.parametrize("concurrency", [1, 100])
def test_concurrency_bounds_accepted(transport, sample_dir, concurrency):
    result, _ = run([sample_dir], transport, concurrency=concurrency)
    assert result.completed == 2


def test_multi_path_watch_rejected(transport, sample_file, sample_dir):
    with pytest.raises(MultiPathWatchUnsupportedError):
        run([sample_file, sample_dir], transport, watch=True)
    assert transport.calls == []


def test_many_files_all_accounted(tmp_path):
    """投入数 = completed + failed（取りこぼしなし）"""
    directory = tmp_path / "many"
    directory.mkdir()
    for i in range(60):
        (directory / f"file_{i:02d}.dat").write_bytes(b"x" * i)
    transport = FlakyTransport(failures=1)

    result, events = run([directory], transport, concurrency=3)

    assert result.enqueued == 60
    assert result.completed + result.failed == result.enqueued
    assert result.completed == 60
    assert len(events) == 60
    assert all(len(e.errors) == 1 for e in events)


def test_delete_after_upload(transport, sample_dir):
    result, _ = run([sample_dir], transport, delete_after_upload=True)

    assert result.completed == 2
    assert list(sample_dir.iterdir()) == []


def test_vanished_file_counts_as_failed_attempts(transport, tmp_path):
    ghost = tmp_path / "ghost.txt"
    ghost.write_text("boo")

    class VanishingTransport(RecordingTransport):
        def put_object(self, bucket, key, body):
            ghost.unlink(missing_ok=True)
            raise ConnectionError("lost connection")

    result, events = run([ghost], VanishingTransport())

    assert result.failed == 1
    assert len(events[0].errors) == 5


def test_missing_path_propagates(transport, sample_file, tmp_path):
    with pytest.raises(EnumerationError):
        run([sample_file, tmp_path / "does-not-exist"], transport)


def test_fail_on_job_failure(sample_file):
    with pytest.raises(JobsFailedError) as excinfo:
        run([sample_file], FlakyTransport(failures=-1), fail_on_job_failure=True)

    assert excinfo.value.result.failed == 1


def test_watch_mode_cancellation(transport, sample_file):
    """監視モードはキャンセルで PipelineCancelledError になる"""
    cancel = threading.Event()
    uploaded = threading.Event()
    events = []

    def on_event(event):
        events.append(event)
        if len(events) >= 2:
            uploaded.set()

    def cancel_after_uploads():
        uploaded.wait(5)
        cancel.set()

    canceller = threading.Thread(target=cancel_after_uploads)
    canceller.start()

    started = time.monotonic()
    with pytest.raises(PipelineCancelledError):
        run_pipeline(
            [str(sample_file)],
            watch=True,
            delete_after_upload=False,
            concurrency=2,
            key_template_text="{{ fileName }}",
            transport=transport,
            bucket="some-cool-bucket",
            on_event=on_event,
            cancel_event=cancel,
            poll_interval_seconds=0.01,
        )
    canceller.join()

    assert len(events) >= 2
    assert time.monotonic() - started < 5


def test_pipeline_can_run_twice(transport, sample_file):
    pipeline = UploadPipeline(
        ObjectUploader(transport, "bucket"),
        compile_template("{{ fileName }}"),
        PipelineOptions(concurrency=2),
    )

    first = pipeline.run([str(sample_file)])
    second = pipeline.run([str(sample_file)])

    assert first.completed == second.completed == 1
    assert len(transport.calls) == 2


def test_event_callback_errors_do_not_stall(transport, sample_dir):
    def broken(event):
        raise RuntimeError("sink unavailable")

    pipeline = UploadPipeline(
        ObjectUploader(transport, "bucket"),
        compile_template("{{ fileName }}"),
        PipelineOptions(concurrency=2),
        on_event=broken,
    )

    assert pipeline.run([str(sample_dir)]).completed == 2


def test_in_flight_counter_waits_for_zero():
    counter = InFlightCounter()
    counter.add(2)
    cancel = threading.Event()

    threading.Timer(0.05, counter.done).start()
    threading.Timer(0.1, counter.done).start()

    assert counter.wait_for_zero(cancel) is True
    assert counter.value == 0


def test_in_flight_counter_cancelled():
    counter = InFlightCounter()
    counter.add()
    cancel = threading.Event()
    cancel.set()

    assert counter.wait_for_zero(cancel) is False


def test_calculate_backoff_delay():
    assert calculate_backoff_delay(3, base_delay=0, max_delay=10) == 0
    assert calculate_backoff_delay(1, base_delay=1.0, max_delay=10, jitter=False) == 1.0
    assert calculate_backoff_delay(3, base_delay=1.0, max_delay=10, jitter=False) == 4.0
    assert calculate_backoff_delay(10, base_delay=1.0, max_delay=10, jitter=False) == 10
    assert 0.5 <= calculate_backoff_delay(1, base_delay=1.0, max_delay=10) <= 1.5


class BlockingTransport(RecordingTransport):
    """release されるまで put_object をブロックし、同時実行数の最大値を記録する"""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()
        self.active = 0
        self.peak = 0

    def put_object(self, bucket, key, body):
        with self.lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            self.release.wait(10)
            super().put_object(bucket, key, body)
        finally:
            with self.lock:
                self.active -= 1


def test_concurrency_bound_and_backpressure(tmp_path, monkeypatch):
    """ワーカーが埋まると列挙側がブロックし、同時アップロード数は concurrency を超えない"""
    import funnel.utils.file_utils as file_utils

    directory = tmp_path / "many"
    directory.mkdir()
    for i in range(10):
        (directory / f"file_{i}.dat").write_text(str(i))

    created = []
    job_class = file_utils.UploadJob

    def counting_job(**kwargs):
        job = job_class(**kwargs)
        created.append(job)
        return job

    monkeypatch.setattr(file_utils, "UploadJob", counting_job)

    concurrency = 2
    transport = BlockingTransport()
    outcome = {}

    def target():
        outcome["result"], _ = run([directory], transport, concurrency=concurrency)

    thread = threading.Thread(target=target)
    thread.start()
    try:
        deadline = time.monotonic() + 5
        while transport.active < concurrency and time.monotonic() < deadline:
            time.sleep(0.01)
        time.sleep(0.2)

        assert transport.active == concurrency
        # 実行中 + pending の空き + submit でブロック中の1件
        assert len(created) <= 2 * concurrency + 1
    finally:
        transport.release.set()
        thread.join(10)

    assert not thread.is_alive()
    assert outcome["result"].completed == 10
    assert len(created) == 10
    assert transport.peak == concurrency
