"""Health check aggregation.

Named async checks run concurrently; each is isolated so one failing or
raising check never aborts the others.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, Iterable, Optional, Union

from edge.app.core.logging import get_logger
from edge.app.services.monitoring.models import (
    CheckResult,
    CheckStatus,
    HealthStatus,
    OverallStatus,
    utc_now_iso,
)

logger = get_logger(__name__)

CheckOutcome = Union[bool, CheckStatus]
HealthCheckFn = Callable[[], Awaitable[CheckOutcome]]


def fold_status(results: Iterable[CheckResult]) -> OverallStatus:
    """Any fail → unhealthy, else any warn → degraded, else healthy."""
    statuses = {result.status for result in results}
    if CheckStatus.FAIL in statuses:
        return OverallStatus.UNHEALTHY
    if CheckStatus.WARN in statuses:
        return OverallStatus.DEGRADED
    return OverallStatus.HEALTHY


class HealthCheck:
    """Runs registered checks and reports an aggregate status.

    A check returns True (pass), False (fail) or a CheckStatus. Raising
    counts as fail with the exception message.

    Usage:
        health = HealthCheck(version="1.0.0")
        health.register("store", store.ping)
        status = await health.run()
    """

    def __init__(
        self,
        version: str,
        started_at: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.version = version
        self._clock = clock
        self.started_at = started_at if started_at is not None else clock()
        self._checks: Dict[str, HealthCheckFn] = {}

    def register(self, name: str, check: HealthCheckFn) -> None:
        """Register (or replace) a named check."""
        self._checks[name] = check

    def unregister(self, name: str) -> None:
        self._checks.pop(name, None)

    @property
    def names(self) -> list[str]:
        return list(self._checks)

    async def _run_check(self, name: str, check: HealthCheckFn) -> CheckResult:
        start = time.perf_counter()
        try:
            outcome = await check()
        except Exception as e:
            logger.warning(f"Health check '{name}' raised: {e}")
            return CheckResult(
                name=name,
                status=CheckStatus.FAIL,
                duration_ms=_elapsed_ms(start),
                message=str(e) or type(e).__name__,
            )

        if isinstance(outcome, CheckStatus):
            status = outcome
        else:
            status = CheckStatus.PASS if outcome else CheckStatus.FAIL
        return CheckResult(name=name, status=status, duration_ms=_elapsed_ms(start))

    async def run(self) -> HealthStatus:
        """Run every check concurrently and fold the results."""
        results = await asyncio.gather(
            *(self._run_check(name, check) for name, check in self._checks.items())
        )
        return HealthStatus(
            status=fold_status(results),
            timestamp=utc_now_iso(),
            version=self.version,
            uptime=round(self._clock() - self.started_at, 3),
            checks=list(results),
        )


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)
