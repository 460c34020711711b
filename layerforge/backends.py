"""Backend registry — configured upstream backends and their live health.

The ``BackendRegistry`` is a plain class (not a singleton) so tests and
multiple differently-configured services can each own one.  The
service constructs one at startup from ``Settings`` and hands it to the
request executor.

Health transitions per backend (all expiry checks are lazy, evaluated
on each ``ready()`` call against the registry's ``Clock``):

* rate limit   → ``rate_limited_until = now + max(retry_after, 60s)``
* 5xx          → ``unavailable_until = now + 30s``
* auth failure → disabled until ``reset()`` / ``reload()``
* success      → cooldowns cleared

State is only mutated between await points of the event loop, so a
single ``Backend`` is never updated concurrently.
"""

from __future__ import annotations

import enum
import logging
import random
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from layerforge.backoff import SERVER_ERROR_COOLDOWN_S, rate_limit_wait
from layerforge.clock import Clock, SystemClock
from layerforge.contracts import BackendConfig, BackendFamily, RoutingStrategy
from layerforge.errors import (
    AuthenticationFailed,
    BackendError,
    NoBackendAvailable,
    RateLimited,
    ServerError,
)

if TYPE_CHECKING:
    from app.config import Settings

logger = logging.getLogger(__name__)


class BackendState(str, enum.Enum):
    """Derived health state of a backend."""

    HEALTHY = "healthy"
    RATE_LIMITED = "rate_limited"
    COOLING_DOWN = "cooling_down"
    DISABLED = "disabled"


class Backend:
    """One configured backend plus its mutable health counters."""

    __slots__ = (
        "config", "priority", "_clock",
        "available", "last_error", "error_count", "request_count",
        "success_count", "rate_limited_until", "unavailable_until",
        "disabled_reason", "last_failure_at", "last_success_at",
    )

    def __init__(self, config: BackendConfig, *, priority: int, clock: Clock) -> None:
        self.config = config
        self.priority = priority
        self._clock = clock
        self.available = True
        self.last_error: str | None = None
        self.error_count = 0
        self.request_count = 0
        self.success_count = 0
        self.rate_limited_until: float | None = None
        self.unavailable_until: float | None = None
        self.disabled_reason: str | None = None
        self.last_failure_at: float | None = None
        self.last_success_at: float | None = None

    # -- config passthrough --------------------------------------------------

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def family(self) -> BackendFamily:
        return self.config.family

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    @property
    def retry_delay_s(self) -> float:
        return self.config.retry_delay_s

    # -- readiness -----------------------------------------------------------

    @property
    def disabled(self) -> bool:
        return self.disabled_reason is not None

    def state(self) -> BackendState:
        """Current state, expiring elapsed cooldowns on the way."""
        now = self._clock.now()
        if self.disabled_reason is not None:
            return BackendState.DISABLED
        if self.unavailable_until is not None:
            if now >= self.unavailable_until:
                self.unavailable_until = None
                self.available = True
                logger.info("Backend %s recovered from server-error cooldown", self.name)
            else:
                return BackendState.COOLING_DOWN
        if self.rate_limited_until is not None:
            if now >= self.rate_limited_until:
                self.rate_limited_until = None
                logger.info("Backend %s rate-limit window elapsed", self.name)
            else:
                return BackendState.RATE_LIMITED
        return BackendState.HEALTHY

    def ready(self) -> bool:
        return self.state() is BackendState.HEALTHY

    # -- outcome recording ---------------------------------------------------

    def mark_success(self) -> None:
        self.request_count += 1
        self.success_count += 1
        self.available = True
        self.rate_limited_until = None
        self.unavailable_until = None
        self.last_success_at = self._clock.now()

    def mark_failure(self, error: BackendError) -> None:
        """Record a failed attempt and apply the matching transition."""
        now = self._clock.now()
        self.request_count += 1
        self.error_count += 1
        self.last_error = f"{error.kind}: {error.message}"
        self.last_failure_at = now

        if isinstance(error, RateLimited):
            wait = rate_limit_wait(error.retry_after)
            self.rate_limited_until = now + wait
            logger.warning(
                "Backend %s rate limited, skipping for %.0fs", self.name, wait,
            )
        elif isinstance(error, AuthenticationFailed):
            self.available = False
            self.disabled_reason = error.message or "authentication failed"
            logger.error(
                "Backend %s disabled: credential rejected (reload configuration to recover)",
                self.name,
            )
        elif isinstance(error, ServerError):
            self.available = False
            self.unavailable_until = now + SERVER_ERROR_COOLDOWN_S
            logger.warning(
                "Backend %s returned %s, cooling down for %.0fs",
                self.name, error.http_status, SERVER_ERROR_COOLDOWN_S,
            )

    def reset(self) -> None:
        """Clear health state and counters."""
        self.available = True
        self.last_error = None
        self.error_count = 0
        self.request_count = 0
        self.success_count = 0
        self.rate_limited_until = None
        self.unavailable_until = None
        self.disabled_reason = None
        self.last_failure_at = None
        self.last_success_at = None

    # -- introspection -------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        now = self._clock.now()
        state = self.state()
        rate = (
            round(self.success_count / self.request_count * 100, 2)
            if self.request_count else 0.0
        )
        return {
            "name": self.name,
            "family": self.family.value,
            "model": self.model,
            "priority": self.priority,
            "state": state.value,
            "available": self.available,
            "ready": state is BackendState.HEALTHY,
            "request_count": self.request_count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "success_rate": rate,
            "last_error": self.last_error,
            "rate_limited_for_s": (
                round(self.rate_limited_until - now, 1)
                if self.rate_limited_until is not None else None
            ),
            "cooling_down_for_s": (
                round(self.unavailable_until - now, 1)
                if self.unavailable_until is not None else None
            ),
            "disabled_reason": self.disabled_reason,
        }

    def __repr__(self) -> str:
        return f"Backend(name={self.name!r}, family={self.family.value}, state={self.state().value})"


class BackendRegistry:
    """Ordered set of backends with strategy-based selection.

    Registration order is priority order: the first backend is the
    failover primary.

    Usage::

        registry = BackendRegistry(configs, strategy=RoutingStrategy.FAILOVER)
        backend = registry.select_backend(excluded=["openai"])
    """

    def __init__(
        self,
        configs: Iterable[BackendConfig] = (),
        *,
        strategy: RoutingStrategy | str = RoutingStrategy.FAILOVER,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.clock: Clock = clock or SystemClock()
        self.strategy = RoutingStrategy.parse(strategy)
        self._rng = rng or random.Random()
        self._cursor = 0
        self._backends: list[Backend] = []
        self._register_all(configs)

    @classmethod
    def from_settings(cls, settings: "Settings", *, clock: Clock | None = None) -> "BackendRegistry":
        return cls(
            settings.backend_configs(),
            strategy=settings.API_ROUTING_STRATEGY,
            clock=clock,
        )

    def _register_all(self, configs: Iterable[BackendConfig]) -> None:
        for config in configs:
            if any(b.name == config.name for b in self._backends):
                raise ValueError(f"Backend '{config.name}' is already registered")
            backend = Backend(config, priority=len(self._backends), clock=self.clock)
            self._backends.append(backend)
            logger.info(
                "Registered backend %s (%s, model=%s)%s",
                config.name, config.family.value, config.model,
                " [primary]" if backend.priority == 0 else "",
            )
        if not self._backends:
            logger.warning("No completion backends configured")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def all_backends(self) -> list[Backend]:
        return list(self._backends)

    def names(self) -> list[str]:
        return [b.name for b in self._backends]

    def get(self, name: str) -> Backend:
        for b in self._backends:
            if b.name == name:
                return b
        raise KeyError(name)

    def ready_backends(self, family: BackendFamily | None = None) -> list[Backend]:
        return [
            b for b in self._backends
            if (family is None or b.family == family) and b.ready()
        ]

    def __len__(self) -> int:
        return len(self._backends)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_backend(
        self,
        excluded: Sequence[str] = (),
        strategy: RoutingStrategy | str | None = None,
        *,
        family: BackendFamily | None = None,
    ) -> Backend:
        """Pick a backend for the next attempt of a logical call.

        Never returns a backend named in *excluded*.  When nothing is
        ready, falls back to the least-recently-failed backend that is
        not disabled.  Raises :class:`NoBackendAvailable` when every
        candidate is excluded or disabled.
        """
        excluded_set = set(excluded)
        pool = [b for b in self._backends if family is None or b.family == family]
        candidates = [b for b in pool if b.name not in excluded_set]
        if not candidates:
            raise NoBackendAvailable(sorted(excluded_set), [b.name for b in pool])

        ready = [b for b in candidates if b.ready()]
        if not ready:
            fallback = [b for b in candidates if not b.disabled]
            if not fallback:
                raise NoBackendAvailable(
                    sorted(excluded_set | {b.name for b in candidates}),
                    [b.name for b in pool],
                )
            chosen = min(
                fallback,
                key=lambda b: (
                    b.last_failure_at if b.last_failure_at is not None else float("-inf"),
                    b.priority,
                ),
            )
            logger.warning(
                "No backend ready; trying least-recently-failed backend %s", chosen.name,
            )
            return chosen

        mode = RoutingStrategy.parse(strategy) if strategy is not None else self.strategy
        if mode is RoutingStrategy.ROUND_ROBIN:
            chosen = ready[self._cursor % len(ready)]
            self._cursor += 1
            return chosen
        if mode is RoutingStrategy.RANDOM:
            return self._rng.choice(ready)
        if mode is RoutingStrategy.LEAST_ERRORS:
            return min(ready, key=lambda b: (b.error_count, b.priority))
        return ready[0]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Clear the health state of every backend."""
        for b in self._backends:
            b.reset()
        self._cursor = 0
        logger.info("Reset health state of %d backend(s)", len(self._backends))

    def reload(
        self,
        configs: Iterable[BackendConfig],
        strategy: RoutingStrategy | str | None = None,
    ) -> None:
        """Replace the configured backends (fresh health state)."""
        self._backends = []
        self._cursor = 0
        if strategy is not None:
            self.strategy = RoutingStrategy.parse(strategy)
        self._register_all(configs)

    def stats(self) -> dict[str, Any]:
        backend_stats = [b.stats() for b in self._backends]
        return {
            "total_backends": len(self._backends),
            "ready_backends": sum(1 for s in backend_stats if s["ready"]),
            "strategy": self.strategy.value,
            "backends": backend_stats,
        }
