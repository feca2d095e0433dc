import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import LoadMode
from .steps.coerce import CoercionResult, Rejection
from .steps.plan import PlanStats

OUT_OF_ORDER_ASSUMPTION = (
    "incremental loads only admit records newer than the stored watermark; "
    "records re-emitted for an already loaded time window are not loaded"
)


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RunReport:
    """Outcome of a single pipeline run"""

    entity_kind: str
    table: str
    mode: LoadMode
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: RunStatus = RunStatus.SUCCEEDED
    read: int = 0
    coerced: int = 0
    rejected: int = 0
    rejection_samples: List[Rejection] = field(default_factory=list)
    candidates: int = 0
    inserted: int = 0
    skipped_duplicate: int = 0
    skipped_in_batch: int = 0
    late: int = 0
    watermark_before: Optional[datetime] = None
    watermark_after: Optional[datetime] = None
    assumptions: List[str] = field(default_factory=list)
    error: Optional[str] = None
    elapsed_seconds: float = 0.0
    _started: float = field(default_factory=time.monotonic, repr=False, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    def record_coercion(self, result: CoercionResult) -> None:
        self.coerced = result.coerced
        self.rejected = result.rejected
        self.rejection_samples = list(result.samples)

    def record_plan(self, stats: PlanStats) -> None:
        self.candidates = stats.candidates
        self.skipped_duplicate = stats.skipped_duplicate
        self.skipped_in_batch = stats.skipped_in_batch
        self.late = stats.late

    def fail(self, error: BaseException) -> None:
        self.status = RunStatus.FAILED
        self.error = f"{type(error).__name__}: {error}"

    def finish(self) -> "RunReport":
        self.elapsed_seconds = time.monotonic() - self._started
        return self

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        del out["_started"]

        out["mode"] = self.mode.value
        out["status"] = self.status.value
        out["rejection_samples"] = [s.to_dict() for s in self.rejection_samples]
        for key in ("watermark_before", "watermark_after"):
            value = getattr(self, key)
            out[key] = value.isoformat() if value is not None else None

        return out


__all__ = ["RunStatus", "RunReport", "OUT_OF_ORDER_ASSUMPTION"]
