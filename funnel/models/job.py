"""アップロードジョブと結果のデータクラス"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobOutcome(Enum):
    """ジョブの終了状態"""
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(eq=False)
class UploadJob:
    """1ファイル分のアップロード作業

    errors は試行ごとに1件ずつ追加される。started_at は作成時に一度だけ設定する。
    """
    path: str
    errors: List[Exception] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    key: Optional[str] = None

    @property
    def attempts(self) -> int:
        """失敗した試行回数"""
        return len(self.errors)


@dataclass(frozen=True)
class UploadEvent:
    """終了したジョブのレポート"""
    path: str
    key: Optional[str]
    started_at: datetime
    ended_at: datetime
    outcome: JobOutcome
    errors: List[str] = field(default_factory=list)

    @property
    def duration_ns(self) -> int:
        delta = self.ended_at - self.started_at
        return (delta.days * 86400 + delta.seconds) * 10**9 + delta.microseconds * 1000

    @property
    def duration_pretty(self) -> str:
        return f"{self.duration_ns / 1e9:.3f}s"

    @classmethod
    def from_job(cls, job: UploadJob, outcome: JobOutcome) -> 'UploadEvent':
        return cls(
            path=job.path,
            key=job.key,
            started_at=job.started_at,
            ended_at=utc_now(),
            outcome=outcome,
            errors=[str(e) for e in job.errors],
        )

    def to_dict(self) -> Dict[str, Any]:
        """構造化ログ用の辞書"""
        data: Dict[str, Any] = {
            "filename": self.path,
            "key": self.key,
            "startedAt": self.started_at.isoformat(),
            "durationPretty": self.duration_pretty,
            "durationNanoseconds": self.duration_ns,
            "outcome": self.outcome.value,
        }
        if self.outcome is JobOutcome.COMPLETED:
            data["completedAt"] = self.ended_at.isoformat()
        else:
            data["failedAt"] = self.ended_at.isoformat()
            data["errors"] = list(self.errors)
        return data


@dataclass
class PipelineResult:
    """パイプライン全体の結果"""
    enqueued: int = 0
    completed: int = 0
    failed: int = 0
    events: List[UploadEvent] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def completed_events(self) -> List[UploadEvent]:
        return [e for e in self.events if e.outcome is JobOutcome.COMPLETED]

    @property
    def failed_events(self) -> List[UploadEvent]:
        return [e for e in self.events if e.outcome is JobOutcome.FAILED]
