from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

import pandas as pd
from loguru import logger

JOIN_MISS = "join_miss"
DEGENERATE_UNIT = "degenerate_unit"
ISOLATED_UNIT = "isolated_unit"
NEAREST_FALLBACK = "centroid_outside_coarse"
BOUNDARY_TIE = "centroid_on_boundary"


@dataclass(frozen=True)
class QualityEvent:
    stage: str
    reason: str
    detail: str
    unit_ids: Tuple[str, ...]

    @property
    def count(self) -> int:
        return len(self.unit_ids)


@dataclass
class QualityLog:
    """
    Running record of every unit dropped, excluded or re-routed during a run.

    Nothing is removed from a table without an entry here; each entry is also
    emitted as a warning so it shows up in the run log.
    """
    events: List[QualityEvent] = field(default_factory=list)

    def record(self, stage: str, reason: str, unit_ids: Iterable, detail: str = "") -> QualityEvent:
        ids = tuple(sorted(str(u) for u in unit_ids))
        event = QualityEvent(stage=stage, reason=reason, detail=detail, unit_ids=ids)
        if ids:
            self.events.append(event)
            sample = ", ".join(ids[:5]) + (" ..." if len(ids) > 5 else "")
            logger.warning(f"[{stage}] {reason}: {len(ids)} unit(s) {detail} [{sample}]")
        return event

    def count(self, reason: str | None = None, stage: str | None = None) -> int:
        return sum(
            e.count for e in self.events
            if (reason is None or e.reason == reason) and (stage is None or e.stage == stage)
        )

    def unit_ids(self, reason: str | None = None, stage: str | None = None) -> List[str]:
        out: List[str] = []
        for e in self.events:
            if (reason is None or e.reason == reason) and (stage is None or e.stage == stage):
                out.extend(e.unit_ids)
        return out

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "QualityLog":
        """Rebuild a log saved with to_frame() without re-emitting warnings."""
        log = cls()
        for (stage, reason, detail), g in df.groupby(["stage", "reason", "detail"], sort=False, dropna=False):
            log.events.append(QualityEvent(stage, reason, detail, tuple(sorted(g["unit_id"].astype(str)))))
        return log

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {"stage": e.stage, "reason": e.reason, "detail": e.detail, "unit_id": uid}
            for e in self.events
            for uid in e.unit_ids
        ]
        return pd.DataFrame(rows, columns=["stage", "reason", "detail", "unit_id"])
