"""Token usage accounting.

``UsageTracker`` accumulates normalised ``Usage`` counters per label
(typically the calling stage, e.g. ``"generate"``) and per UTC day, and
keeps a bounded history of individual records.  A total ceiling can be
enforced with ``ensure_within_budget()``, which the request executor
calls before dispatching; ``record()`` itself never raises so a
completed response is never lost.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict

from layerforge.contracts import Usage
from layerforge.errors import TokenBudgetExceeded

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOTAL = 1_000_000
DEFAULT_WARNING_THRESHOLD = 0.8
HISTORY_LIMIT = 1_000


class UsageRecord(BaseModel):
    """One recorded completion."""

    model_config = ConfigDict(frozen=True)

    label: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    timestamp: datetime


class _Bucket:
    __slots__ = ("total", "prompt", "completion", "count")

    def __init__(self) -> None:
        self.total = 0
        self.prompt = 0
        self.completion = 0
        self.count = 0

    def add(self, usage: Usage) -> None:
        self.total += usage.total_tokens
        self.prompt += usage.prompt_tokens
        self.completion += usage.completion_tokens
        self.count += 1

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "prompt": self.prompt,
            "completion": self.completion,
            "count": self.count,
        }


class UsageTracker:
    """Cumulative token counters with a soft warning and a hard ceiling.

    Parameters
    ----------
    max_total:
        Ceiling on cumulative ``total_tokens``.  ``0`` disables the check.
    warning_threshold:
        Fraction of *max_total* at which a warning is logged (once per
        crossing, until ``reset()``).
    """

    def __init__(
        self,
        max_total: int = DEFAULT_MAX_TOTAL,
        warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
        *,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        if max_total < 0:
            raise ValueError("max_total must be >= 0")
        if not 0.0 < warning_threshold <= 1.0:
            raise ValueError("warning_threshold must be in (0, 1]")
        self.max_total = max_total
        self.warning_threshold = warning_threshold
        self._history_limit = history_limit
        self.reset()

    def reset(self) -> None:
        self._totals = _Bucket()
        self._by_label: dict[str, _Bucket] = {}
        self._by_date: dict[str, _Bucket] = {}
        self._history: deque[UsageRecord] = deque(maxlen=self._history_limit)
        self._warned = False

    # ------------------------------------------------------------------

    @property
    def total(self) -> int:
        return self._totals.total

    @property
    def remaining(self) -> int | None:
        if not self.max_total:
            return None
        return max(self.max_total - self._totals.total, 0)

    def record(self, label: str, usage: Usage) -> None:
        """Add *usage* under *label*."""
        now = datetime.now(timezone.utc)
        self._totals.add(usage)
        self._by_label.setdefault(label, _Bucket()).add(usage)
        self._by_date.setdefault(now.date().isoformat(), _Bucket()).add(usage)
        self._history.append(UsageRecord(
            label=label,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            timestamp=now,
        ))
        self._check_levels()

    def _check_levels(self) -> None:
        if not self.max_total:
            return
        used = self._totals.total
        if used > self.max_total:
            logger.error("Token usage over limit: %d / %d", used, self.max_total)
        elif not self._warned and used >= self.max_total * self.warning_threshold:
            self._warned = True
            logger.warning(
                "Token usage at %.1f%% of limit (%d / %d)",
                used / self.max_total * 100, used, self.max_total,
            )

    def ensure_within_budget(self) -> None:
        """Raise :class:`TokenBudgetExceeded` once the ceiling is passed."""
        if self.max_total and self._totals.total > self.max_total:
            raise TokenBudgetExceeded(self._totals.total, self.max_total)

    # ------------------------------------------------------------------

    def average(self, label: str) -> dict[str, int] | None:
        """Mean tokens per call for *label*, or None if nothing recorded."""
        bucket = self._by_label.get(label)
        if bucket is None or bucket.count == 0:
            return None
        return {
            "total": round(bucket.total / bucket.count),
            "prompt": round(bucket.prompt / bucket.count),
            "completion": round(bucket.completion / bucket.count),
            "count": bucket.count,
        }

    def history(self, limit: int | None = None) -> list[UsageRecord]:
        items = list(self._history)
        return items[-limit:] if limit else items

    def stats(self) -> dict[str, Any]:
        totals = self._totals
        return {
            "total": totals.total,
            "prompt": totals.prompt,
            "completion": totals.completion,
            "calls": totals.count,
            "by_label": {k: v.to_dict() for k, v in self._by_label.items()},
            "by_date": {k: v.to_dict() for k, v in self._by_date.items()},
            "max_total": self.max_total,
            "remaining": self.remaining,
            "percentage": (
                round(totals.total / self.max_total * 100, 2) if self.max_total else None
            ),
        }
