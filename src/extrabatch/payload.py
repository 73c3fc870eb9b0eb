"""Request/response payload sizing for batchUpdate calls.

Google rejects batchUpdate bodies above roughly 10 MB. Batches are refused
locally above MAX_PAYLOAD_BYTES and logged as a warning above
WARNING_PAYLOAD_BYTES.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from loguru import logger

MAX_PAYLOAD_BYTES = 9_000_000
WARNING_PAYLOAD_BYTES = 7_000_000


def payload_size(payload: Any) -> int:
    """Size in bytes of ``payload`` serialized as compact JSON."""
    return len(json.dumps(payload, separators=(",", ":")).encode("utf-8"))


@dataclass(frozen=True)
class PayloadMetrics:
    """Sizes of one batchUpdate exchange."""

    operation: str
    request_bytes: int
    response_bytes: int
    request_count: int

    @property
    def request_mb(self) -> float:
        return round(self.request_bytes / 1_000_000, 2)

    @property
    def response_mb(self) -> float:
        return round(self.response_bytes / 1_000_000, 2)

    @property
    def exceeds_limit(self) -> bool:
        return self.request_bytes > MAX_PAYLOAD_BYTES

    @property
    def near_limit(self) -> bool:
        return self.request_bytes > WARNING_PAYLOAD_BYTES


def monitor_payload(
    operation: str,
    request: dict[str, Any],
    response: dict[str, Any],
) -> PayloadMetrics:
    """Measure a completed exchange and log it."""
    metrics = PayloadMetrics(
        operation=operation,
        request_bytes=payload_size(request),
        response_bytes=payload_size(response),
        request_count=len(request.get("requests") or []),
    )
    logger.debug(
        "Payload sizes",
        extra={
            "operation": operation,
            "request_mb": metrics.request_mb,
            "response_mb": metrics.response_mb,
            "request_count": metrics.request_count,
        },
    )
    return metrics
