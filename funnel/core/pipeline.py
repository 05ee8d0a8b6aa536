"""アップロードパイプライン（ワーカープールとリトライ）

pending キューをワーカーが取り出してアップロードし、結果に応じて
completed / リトライ / failed に振り分ける。全ジョブが終了状態に達するまで
run() はブロックする。
"""
import itertools
import queue
import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional

from ..errors import (
    FunnelError,
    JobsFailedError,
    MultiPathWatchUnsupportedError,
    NoPathsProvidedError,
    PipelineCancelledError,
)
from ..models.config import PipelineOptions
from ..models.job import JobOutcome, PipelineResult, UploadEvent, UploadJob
from ..utils.file_utils import PathEnumerator
from ..utils.key_template import KeyTemplate
from ..utils.logger import LoggerManager
from .uploader import ObjectUploader


# ブロッキング待ちでキャンセル・停止を確認する間隔（秒）
POLL_SECONDS = 0.05

EventCallback = Callable[[UploadEvent], None]


def calculate_backoff_delay(attempt: int, base_delay: float, max_delay: float, jitter: bool = True) -> float:
    """リトライ待ち時間（指数バックオフ、±50% のジッター付き）"""
    if base_delay <= 0:
        return 0.0
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    if jitter:
        delay = delay * random.uniform(0.5, 1.5)
    return max(delay, 0.0)


class InFlightCounter:
    """終了状態に達していないジョブ数"""

    def __init__(self):
        self._count = 0
        self._cond = threading.Condition()

    @property
    def value(self) -> int:
        with self._cond:
            return self._count

    def add(self, n: int = 1) -> None:
        with self._cond:
            self._count += n

    def done(self) -> None:
        with self._cond:
            self._count -= 1
            if self._count <= 0:
                self._cond.notify_all()

    def wait_for_zero(self, cancel_event: threading.Event) -> bool:
        """0 になれば True、キャンセルされれば False"""
        with self._cond:
            while self._count > 0:
                if cancel_event.is_set():
                    return False
                self._cond.wait(timeout=POLL_SECONDS)
            return True


class _PipelineRun:
    """1回の run() 分のキュー・スレッド・集計"""

    def __init__(
        self,
        uploader: ObjectUploader,
        key_template: KeyTemplate,
        options: PipelineOptions,
        on_event: Optional[EventCallback],
        cancel_event: threading.Event,
    ):
        self.uploader = uploader
        self.key_template = key_template
        self.options = options
        self.on_event = on_event
        self.cancel_event = cancel_event
        self.logger = LoggerManager.get_logger(__name__)

        self.pending: "queue.Queue[UploadJob]" = queue.Queue(maxsize=options.concurrency)
        self.retries: "queue.PriorityQueue" = queue.PriorityQueue()
        self.completed: "queue.Queue[UploadJob]" = queue.Queue()
        self.failed: "queue.Queue[UploadJob]" = queue.Queue()

        self.counter = InFlightCounter()
        self.result = PipelineResult()
        self._result_lock = threading.Lock()
        self._sequence = itertools.count()
        self._stop = threading.Event()

    def start(self, pool: ThreadPoolExecutor) -> List[Future]:
        """ワーカー・リトライ配送・集計スレッドを起動"""
        futures = [pool.submit(self._work) for _ in range(self.options.concurrency)]
        futures.append(pool.submit(self._dispatch_retries))
        futures.append(pool.submit(self._drain, self.completed, JobOutcome.COMPLETED))
        futures.append(pool.submit(self._drain, self.failed, JobOutcome.FAILED))
        return futures

    def stop(self) -> None:
        self._stop.set()

    def submit(self, job: UploadJob) -> None:
        """列挙されたジョブを投入（pending が空くまでブロック）"""
        self.counter.add()
        with self._result_lock:
            self.result.enqueued += 1
        if not self._put_pending(job):
            raise PipelineCancelledError()

    def wait(self) -> bool:
        return self.counter.wait_for_zero(self.cancel_event)

    def _halted(self) -> bool:
        return self._stop.is_set() or self.cancel_event.is_set()

    def _put_pending(self, job: UploadJob) -> bool:
        while not self._halted():
            try:
                self.pending.put(job, timeout=POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def _work(self) -> None:
        while not self._halted():
            try:
                job = self.pending.get(timeout=POLL_SECONDS)
            except queue.Empty:
                continue
            self._handle(job)

    def _handle(self, job: UploadJob) -> None:
        try:
            job.key = self.key_template.key_for_file(job.path)
            self.uploader.upload(job.path, job.key)
        except FunnelError as e:
            self._record_failure(job, e)
            return
        except Exception as e:
            self.logger.error(f"Unexpected error uploading {job.path}: {e}", exc_info=True)
            self._record_failure(job, e)
            return

        self.completed.put(job)

    def _record_failure(self, job: UploadJob, error: Exception) -> None:
        job.errors.append(error)

        if job.attempts < self.options.max_attempts:
            delay = calculate_backoff_delay(
                job.attempts,
                self.options.retry_backoff_seconds,
                self.options.retry_backoff_max_seconds,
            )
            self.logger.warning(
                f"Upload failed (attempt {job.attempts}/{self.options.max_attempts}), "
                f"retrying: {job.path}: {error}"
            )
            self.retries.put((time.monotonic() + delay, next(self._sequence), job))
        else:
            self.failed.put(job)

    def _dispatch_retries(self) -> None:
        """リトライ待ちのジョブを pending に戻す（プールで1スレッド）"""
        while not self._halted():
            try:
                ready_at, _, job = self.retries.get(timeout=POLL_SECONDS)
            except queue.Empty:
                continue

            delay = ready_at - time.monotonic()
            if delay > 0 and self._wait_halted(delay):
                return
            self._put_pending(job)

    def _wait_halted(self, seconds: float) -> bool:
        deadline = time.monotonic() + seconds
        while not self._halted():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self._stop.wait(min(remaining, POLL_SECONDS))
        return True

    def _drain(self, terminal: "queue.Queue[UploadJob]", outcome: JobOutcome) -> None:
        """終了状態のジョブを集計（キューごとに1スレッド）"""
        while True:
            try:
                job = terminal.get(timeout=POLL_SECONDS)
            except queue.Empty:
                if self._stop.is_set():
                    return
                continue

            try:
                self._report(UploadEvent.from_job(job, outcome))
            finally:
                self.counter.done()

    def _report(self, event: UploadEvent) -> None:
        with self._result_lock:
            self.result.events.append(event)
            if event.outcome is JobOutcome.COMPLETED:
                self.result.completed += 1
            else:
                self.result.failed += 1

        if event.outcome is JobOutcome.COMPLETED:
            self.logger.info(
                f"Uploaded file {event.path} to {self.uploader.bucket}/{event.key} "
                f"({event.duration_pretty})",
                extra={"upload": event.to_dict()},
            )
        else:
            self.logger.error(
                f"Failed to upload file {event.path} after {len(event.errors)} attempt(s): "
                f"{'; '.join(event.errors)}",
                extra={"upload": event.to_dict()},
            )

        if self.on_event is not None:
            try:
                self.on_event(event)
            except Exception as e:
                self.logger.error(f"Event callback failed for {event.path}: {e}", exc_info=True)


class UploadPipeline:
    """パスを列挙して並列にアップロードする"""

    def __init__(
        self,
        uploader: ObjectUploader,
        key_template: KeyTemplate,
        options: Optional[PipelineOptions] = None,
        on_event: Optional[EventCallback] = None,
    ):
        self.uploader = uploader
        self.key_template = key_template
        self.options = options or PipelineOptions()
        self.on_event = on_event
        self.logger = LoggerManager.get_logger(__name__)

    def run(self, paths: List[str], cancel_event: Optional[threading.Event] = None) -> PipelineResult:
        """全ジョブが完了または失敗するまでアップロードを実行

        Raises:
            ConfigurationError: パス未指定、複数パスの監視
            EnumerationError: パスの stat・走査に失敗
            PipelineCancelledError: cancel_event がセットされた
            JobsFailedError: fail_on_job_failure が有効で失敗ジョブがある
        """
        if not paths:
            raise NoPathsProvidedError()
        if self.options.watch and len(paths) > 1:
            raise MultiPathWatchUnsupportedError()

        cancel_event = cancel_event or threading.Event()
        run = _PipelineRun(self.uploader, self.key_template, self.options, self.on_event, cancel_event)
        enumerator = PathEnumerator(
            submit=run.submit,
            poll_interval=self.options.poll_interval_seconds,
            exclude_patterns=self.options.exclude_patterns,
            cancel_event=cancel_event,
        )

        self.logger.info(
            f"Starting upload of {len(paths)} path(s) with {self.options.concurrency} workers"
            + (" (watching for changes)" if self.options.watch else "")
        )

        with ThreadPoolExecutor(
            max_workers=self.options.concurrency + 3,
            thread_name_prefix="funnel",
        ) as pool:
            futures = run.start(pool)
            try:
                enumerator.enumerate(list(paths), watch=self.options.watch)
                if not run.wait():
                    raise PipelineCancelledError()
            finally:
                run.stop()

        # ワーカースレッド自体の例外はここで送出
        for future in futures:
            future.result()

        result = run.result
        self.logger.info(
            f"Upload completed: {result.completed} successful, {result.failed} failed"
        )
        if self.options.fail_on_job_failure and result.failed:
            raise JobsFailedError(result)
        return result
