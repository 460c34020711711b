"""Request executor — one logical completion call across many backends.

``RequestExecutor.execute`` keeps trying distinct backends until one
answers:

1. ask the registry for a backend, excluding those already tried,
2. dispatch through the adapter and transport (with a short inner retry
   loop for transient failures of that one backend),
3. on success mark the backend healthy and return the envelope,
4. on failure record the classified error on the backend and move on.

When every reachable backend has failed, ``AllBackendsExhausted`` is
raised with every attempt attached.  No other backend error escapes.
"""

from __future__ import annotations

import logging

from layerforge.adapter import BackendAdapter
from layerforge.backends import Backend, BackendRegistry
from layerforge.backoff import ExponentialBackoff, RATE_LIMIT_FLOOR_S, rate_limit_wait
from layerforge.clock import Clock
from layerforge.contracts import ExecuteOptions, RequestEnvelope, ResponseEnvelope
from layerforge.errors import (
    AllBackendsExhausted,
    BackendError,
    NetworkOrTimeout,
    NoBackendAvailable,
    RateLimited,
)
from layerforge.transport import HttpTransport, Transport
from layerforge.usage import UsageTracker

logger = logging.getLogger(__name__)


class RequestExecutor:
    """Runs completion requests with failover, retry and backoff.

    Parameters
    ----------
    registry:
        The ``BackendRegistry`` whose health state is consulted and
        updated on every attempt.
    adapter:
        Envelope/wire translator (default ``BackendAdapter()``).
    transport:
        Anything with ``async send(WireRequest) -> WireResponse``
        (default ``HttpTransport()``).
    clock:
        Used for backoff sleeps; defaults to the registry's clock so
        cooldowns and waits share one timeline.
    usage:
        Optional ``UsageTracker`` fed with every successful response.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        *,
        adapter: BackendAdapter | None = None,
        transport: Transport | None = None,
        clock: Clock | None = None,
        usage: UsageTracker | None = None,
    ) -> None:
        self.registry = registry
        self.adapter = adapter or BackendAdapter()
        self.transport: Transport = transport or HttpTransport()
        self.clock: Clock = clock or registry.clock
        self.usage = usage

    async def execute(
        self,
        envelope: RequestEnvelope,
        options: ExecuteOptions | None = None,
    ) -> ResponseEnvelope:
        options = options or ExecuteOptions()
        if self.usage is not None:
            self.usage.ensure_within_budget()

        family = options.provider
        pool = [
            b for b in self.registry.all_backends()
            if family is None or b.family == family
        ]
        if not pool:
            raise NoBackendAvailable([], self.registry.names())

        max_provider_retries = min(options.max_provider_retries or len(pool), len(pool))
        tried: list[str] = []
        attempts: list[BackendError] = []

        for round_no in range(max_provider_retries):
            try:
                backend = self.registry.select_backend(excluded=tried, family=family)
            except NoBackendAvailable:
                if not attempts:
                    raise
                break
            tried.append(backend.name)

            last_round = round_no == max_provider_retries - 1
            untried_left = any(
                b.name not in tried and not b.disabled for b in pool
            )
            logger.info(
                "Dispatching to backend %s (attempt %d/%d)",
                backend.name, round_no + 1, max_provider_retries,
            )
            try:
                response = await self._attempt(
                    backend, envelope, options,
                    wait_out_rate_limit=last_round or not untried_left,
                )
            except BackendError as exc:
                attempts.append(exc)
                if not last_round:
                    logger.warning(
                        "Backend %s failed (%s), switching backend", backend.name, exc.kind,
                    )
                continue

            if self.usage is not None:
                self.usage.record(options.label, response.usage)
            return response

        error = AllBackendsExhausted(attempts)
        logger.error("%s", error.message)
        raise error from (attempts[-1] if attempts else None)

    async def _attempt(
        self,
        backend: Backend,
        envelope: RequestEnvelope,
        options: ExecuteOptions,
        *,
        wait_out_rate_limit: bool,
    ) -> ResponseEnvelope:
        """Call one backend, retrying transient failures in place."""
        backoff = ExponentialBackoff(
            initial_s=backend.retry_delay_s,
            max_s=max(RATE_LIMIT_FLOOR_S, backend.retry_delay_s),
        )
        retries = 0
        while True:
            wire = self.adapter.to_wire(
                backend.config, envelope,
                model=options.model,
                temperature=options.temperature,
                max_tokens=options.max_tokens,
            )
            try:
                raw = await self.transport.send(wire)
                response = self.adapter.from_wire(raw)
            except BackendError as exc:
                exc.with_backend(backend.name)
                backend.mark_failure(exc)
                if retries >= backend.max_retries:
                    raise
                if isinstance(exc, NetworkOrTimeout):
                    delay = next(backoff)
                elif isinstance(exc, RateLimited) and wait_out_rate_limit:
                    delay = rate_limit_wait(exc.retry_after)
                else:
                    raise
                retries += 1
                logger.warning(
                    "Backend %s %s (retry %d/%d), retrying in %.1fs",
                    backend.name, exc.kind, retries, backend.max_retries, delay,
                )
                await self.clock.sleep(delay)
                continue

            backend.mark_success()
            if not response.backend:
                response = response.model_copy(update={"backend": backend.name})
            logger.info(
                "Backend %s answered (%d tokens, finish=%s)",
                backend.name, response.usage.total_tokens, response.finish_reason,
            )
            return response
