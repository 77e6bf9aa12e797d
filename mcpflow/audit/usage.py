from __future__ import annotations

import logging

from ..gateway.models import UsageRecord
from ..monitoring.metrics import usage_record_failures_total
from ..store.models import UsageLog
from ..store.repository import UsageStore

logger = logging.getLogger(__name__)


class UsageRecorder:
    """Best-effort, append-only writer of usage rows.

    A failed write is logged and counted but never raised: the proxied
    call's outcome has already been decided when recording happens.
    """

    def __init__(self, store: UsageStore):
        self.store = store

    async def record(self, record: UsageRecord) -> bool:
        row = UsageLog(  # type: ignore[call-arg]
            owner_id=record.principal_id,
            credential_id=record.credential_id,
            service_name=record.service_name,
            path=record.path,
            method=record.method,
            status_code=record.status_code,
            duration_ms=max(0.0, record.duration_ms),
            request_headers=record.request_headers,
            response_headers=record.response_headers,
            timestamp=record.timestamp,
        )
        try:
            await self.store.append(row)
        except Exception:  # noqa: BLE001
            usage_record_failures_total.inc()
            logger.exception(
                "usage record failed for credential %s (%s %s)",
                record.credential_id,
                record.method,
                record.service_name,
            )
            return False
        return True
