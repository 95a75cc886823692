"""
Per-run trace for the search pipeline.

Each stage records how many items went in, how many came out, and why the
rest were dropped (grouped by reason, with a few sample URLs). Stage
summaries are logged as single-line JSON so an external collector can
pick them up, correlated by run_id.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_SAMPLES_PER_REASON = 3


@dataclass
class StageStat:
    """Counts for one pipeline stage."""

    stage: str
    count_in: int = 0
    count_out: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)
    samples: Dict[str, List[str]] = field(default_factory=dict)

    def reject(self, reason: str, sample: Optional[str] = None) -> None:
        self.reasons[reason] = self.reasons.get(reason, 0) + 1
        if sample is None:
            return
        bucket = self.samples.setdefault(reason, [])
        if len(bucket) < MAX_SAMPLES_PER_REASON:
            bucket.append(sample)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "in": self.count_in,
            "out": self.count_out,
            "reasons": [
                {
                    "key": reason,
                    "count": count,
                    "samples": self.samples.get(reason, []),
                }
                for reason, count in sorted(self.reasons.items())
            ],
        }


@dataclass
class QueryRecord:
    tier: str
    provider: str
    query: str
    results: int
    degraded: bool = False


class RunTrace:
    """
    Collects stage statistics and provider calls for a single run.

    Usage:
        trace = RunTrace(run_id)
        stat = trace.stage("url_gate", count_in=len(items))
        ...
        trace.emit(stat)
    """

    def __init__(self, run_id: str, clock=time.monotonic):
        self.run_id = run_id
        self._clock = clock
        self._started = clock()
        self.stages: List[StageStat] = []
        self.queries: List[QueryRecord] = []
        self.deadline_exceeded = False

    def stage(self, name: str, count_in: int = 0) -> StageStat:
        stat = StageStat(stage=name, count_in=count_in)
        self.stages.append(stat)
        return stat

    def record_query(
        self,
        tier: str,
        provider: str,
        query: str,
        results: int,
        degraded: bool = False,
    ) -> None:
        self.queries.append(
            QueryRecord(tier=tier, provider=provider, query=query, results=results, degraded=degraded)
        )

    def elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    def emit(self, stat: StageStat) -> None:
        """Log one stage summary as JSON."""
        payload = {"run_id": self.run_id, **stat.to_dict()}
        logger.info(json.dumps(payload, ensure_ascii=False))

    def summary(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "elapsed_ms": self.elapsed_ms(),
            "deadline_exceeded": self.deadline_exceeded,
            "queries": [
                {
                    "tier": q.tier,
                    "provider": q.provider,
                    "q": q.query,
                    "len": len(q.query),
                    "results": q.results,
                    "degraded": q.degraded,
                }
                for q in self.queries
            ],
            "stages": [s.to_dict() for s in self.stages],
        }

    def emit_summary(self) -> None:
        logger.info(json.dumps(self.summary(), ensure_ascii=False))
