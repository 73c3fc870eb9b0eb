"""Tests for payload sizing."""

from __future__ import annotations

from extrabatch.payload import (
    MAX_PAYLOAD_BYTES,
    WARNING_PAYLOAD_BYTES,
    PayloadMetrics,
    monitor_payload,
    payload_size,
)


class TestPayloadSize:
    """Tests for payload_size."""

    def test_compact_json_bytes(self) -> None:
        assert payload_size({"a": [1, 2]}) == len('{"a":[1,2]}')

    def test_non_ascii_escaped(self) -> None:
        assert payload_size("é") == len('"\\u00e9"')


class TestPayloadMetrics:
    """Tests for PayloadMetrics thresholds."""

    def test_thresholds(self) -> None:
        small = PayloadMetrics("op", 1_000, 0, 1)
        warning = PayloadMetrics("op", WARNING_PAYLOAD_BYTES + 1, 0, 1)
        too_big = PayloadMetrics("op", MAX_PAYLOAD_BYTES + 1, 0, 1)

        assert not small.near_limit and not small.exceeds_limit
        assert warning.near_limit and not warning.exceeds_limit
        assert too_big.near_limit and too_big.exceeds_limit

    def test_megabytes_rounded(self) -> None:
        metrics = PayloadMetrics("op", 1_234_567, 2_500_000, 3)
        assert metrics.request_mb == 1.23
        assert metrics.response_mb == 2.5


class TestMonitorPayload:
    """Tests for monitor_payload."""

    def test_measures_exchange(self) -> None:
        request = {"requests": [{"clearBasicFilter": {"sheetId": 0}}] * 3}
        response = {"replies": [{}, {}, {}]}

        metrics = monitor_payload("batchUpdate:abc", request, response)

        assert metrics.operation == "batchUpdate:abc"
        assert metrics.request_count == 3
        assert metrics.request_bytes == payload_size(request)
        assert metrics.response_bytes == payload_size(response)
