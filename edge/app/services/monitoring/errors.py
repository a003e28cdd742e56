"""Error tracking with optional forwarding to a Sentry-compatible endpoint.

Captured errors always land in a bounded local buffer. When a DSN is
configured each error is also sent once to the store API; a failed send is
logged and dropped, never raised to the caller.
"""

import asyncio
import threading
import traceback
import uuid
from collections import deque
from typing import Any, Dict, List, Optional, Set

import httpx

from edge.app.core.http_client import get_http_client
from edge.app.core.logging import get_logger
from edge.app.services.monitoring.models import ErrorRecord, utc_now_iso

logger = get_logger(__name__)

DEFAULT_BUFFER_SIZE = 100
SENTRY_VERSION = 7


class SentryDsn:
    """Parsed DSN: ``{scheme}://{public_key}@{host}/{project_id}``."""

    def __init__(self, dsn: str):
        url = httpx.URL(dsn)
        path = url.path.strip("/")
        if not url.host or not url.username or not path:
            raise ValueError("Invalid Sentry DSN: expected scheme://key@host/project")

        prefix, _, project_id = path.rpartition("/")
        self.public_key = url.username
        self.project_id = project_id
        base = f"{url.scheme}://{url.host}"
        if url.port:
            base += f":{url.port}"
        if prefix:
            base += f"/{prefix}"
        self.store_url = f"{base}/api/{project_id}/store/"

    @property
    def auth_header(self) -> str:
        return f"Sentry sentry_version={SENTRY_VERSION}, sentry_key={self.public_key}"


class ErrorTracker:
    """Keeps recent errors and forwards them to Sentry when configured.

    Usage:
        tracker = ErrorTracker(dsn=settings.sentry_dsn or None)
        await tracker.capture(exc, {"path": "/api/chat"})  # waits for the send
        tracker.capture_nowait(exc, {"path": "/api/chat"})  # sends in background
        await tracker.flush()  # on shutdown
    """

    def __init__(
        self,
        dsn: Optional[str] = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        http_client: Optional[httpx.AsyncClient] = None,
        platform: str = "python",
    ):
        """Initialize the tracker.

        Args:
            dsn: Sentry DSN; None or empty disables forwarding
            buffer_size: Number of recent errors kept locally
            http_client: Client for forwarding (None = shared app client)
            platform: Platform tag sent with each event

        Raises:
            ValueError: If the DSN cannot be parsed
        """
        self.dsn = SentryDsn(dsn) if dsn else None
        self.platform = platform
        self._http_client = http_client
        self._errors: deque[ErrorRecord] = deque(maxlen=buffer_size)
        self._lock = threading.Lock()
        self._pending: Set[asyncio.Task] = set()

    @property
    def forwarding_enabled(self) -> bool:
        return self.dsn is not None

    def _store(self, error: BaseException, context: Optional[Dict[str, Any]]) -> ErrorRecord:
        record = ErrorRecord(timestamp=utc_now_iso(), error=error, context=dict(context or {}))
        with self._lock:
            self._errors.append(record)
        return record

    async def capture(
        self, error: BaseException, context: Optional[Dict[str, Any]] = None
    ) -> ErrorRecord:
        """Store ``error`` and, if configured, forward it before returning."""
        record = self._store(error, context)
        if self.dsn is not None:
            await self._forward(record)
        return record

    def capture_nowait(
        self, error: BaseException, context: Optional[Dict[str, Any]] = None
    ) -> ErrorRecord:
        """Store ``error`` and schedule forwarding without waiting for it."""
        record = self._store(error, context)
        if self.dsn is None:
            return record

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; error kept locally but not forwarded")
            return record

        task = loop.create_task(self._forward(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return record

    async def flush(self, timeout: float = 5.0) -> None:
        """Wait for background forwards to finish."""
        if not self._pending:
            return
        _, still_pending = await asyncio.wait(set(self._pending), timeout=timeout)
        if still_pending:
            logger.warning(f"{len(still_pending)} error reports still pending after flush")

    async def _forward(self, record: ErrorRecord) -> None:
        """Single best-effort send; failures are logged, not raised."""
        try:
            client = self._http_client or get_http_client()
            response = await client.post(
                self.dsn.store_url,
                json=self.build_payload(record),
                headers={"X-Sentry-Auth": self.dsn.auth_header},
            )
            response.raise_for_status()
        except Exception as e:
            logger.warning(f"Failed to send error to Sentry: {e}")

    def build_payload(self, record: ErrorRecord) -> Dict[str, Any]:
        """Sentry store API event for ``record``."""
        return {
            "event_id": uuid.uuid4().hex,
            "timestamp": record.timestamp,
            "platform": self.platform,
            "exception": {
                "values": [
                    {
                        "type": type(record.error).__name__,
                        "value": str(record.error),
                        "stacktrace": {"frames": self.parse_stack(record.error)},
                    }
                ]
            },
            "extra": record.context,
        }

    @staticmethod
    def parse_stack(error: BaseException) -> List[Dict[str, Any]]:
        """Stack frames of ``error``, oldest call first."""
        if error.__traceback__ is None:
            return []
        return [
            {"filename": frame.filename, "function": frame.name, "lineno": frame.lineno or 0}
            for frame in traceback.extract_tb(error.__traceback__)
        ]

    def get_recent_errors(self, count: int = 20) -> List[Dict[str, Any]]:
        """Most recent ``count`` errors, oldest first, without stack traces."""
        if count <= 0:
            return []
        with self._lock:
            records = list(self._errors)[-count:]
        return [record.to_dict() for record in records]
