"""Tests for DiffEngine."""

from __future__ import annotations

from typing import Any

import pytest

from extrabatch.diff_engine import (
    DiffEngine,
    DiffTier,
    FullDiff,
    MetadataDiff,
    SampleDiff,
    SheetState,
    SpreadsheetState,
)
from extrabatch.rate_limiter import RateLimiter
from extrabatch.response_parser import ResponseParser
from extrabatch.transport import APIError
from extrabatch.utils import checksum
from tests.fakes import FakeTransport, make_spreadsheet


def _state(
    engine: DiffEngine,
    values: list[list[Any]],
    *,
    title: str = "Sheet1",
    spreadsheet_id: str = "sheet-1",
) -> SpreadsheetState:
    blocks = engine.compute_block_checksums(values)
    columns = max((len(row) for row in values), default=0)
    sheet = SheetState(
        sheet_id=0,
        title=title,
        row_count=len(values),
        column_count=columns,
        checksum=checksum([0, title, len(values), columns, blocks]),
        block_checksums=blocks,
        values=values,
    )
    return SpreadsheetState(
        timestamp="2024-01-01T00:00:00+00:00",
        spreadsheet_id=spreadsheet_id,
        sheets=[sheet],
        checksum=checksum([sheet.checksum]),
    )


def _grid_sheet(sheet_id: int, title: str, rows: list[list[Any]]) -> dict[str, Any]:
    return {
        "properties": {
            "sheetId": sheet_id,
            "title": title,
            "gridProperties": {
                "rowCount": len(rows),
                "columnCount": max((len(r) for r in rows), default=0),
            },
        },
        "data": [
            {
                "rowData": [
                    {"values": [{"effectiveValue": {"stringValue": v}} for v in row]}
                    for row in rows
                ]
            }
        ],
    }


class TestTiers:
    """Tests for tier ordering and selection."""

    def test_ordering(self) -> None:
        assert DiffTier.METADATA < DiffTier.SAMPLE < DiffTier.FULL
        assert DiffTier.FULL <= DiffTier.FULL

    def test_select_tier_thresholds(self) -> None:
        engine = DiffEngine()

        assert engine.select_tier(0) is DiffTier.METADATA
        assert engine.select_tier(99) is DiffTier.METADATA
        assert engine.select_tier(100) is DiffTier.SAMPLE
        assert engine.select_tier(4999) is DiffTier.SAMPLE
        assert engine.select_tier(5000) is DiffTier.FULL

    def test_select_tier_is_monotone(self) -> None:
        engine = DiffEngine(sample_threshold=10, full_threshold=50)
        tiers = [engine.select_tier(n) for n in range(0, 200, 7)]
        assert tiers == sorted(tiers, key=lambda t: t.cost)

    def test_rejects_inverted_thresholds(self) -> None:
        with pytest.raises(ValueError, match="sample_threshold"):
            DiffEngine(sample_threshold=6000, full_threshold=5000)

    def test_rejects_zero_block_size(self) -> None:
        with pytest.raises(ValueError, match="block_size"):
            DiffEngine(block_size=0)


class TestCaptureState:
    """Tests for capture_state against a transport."""

    async def test_metadata_tier_fetches_properties_only(
        self, diff_engine: DiffEngine, transport: FakeTransport
    ) -> None:
        state = await diff_engine.capture_state("sheet-1", tier=DiffTier.METADATA)

        assert [s.title for s in state.sheets] == ["Sheet1"]
        assert state.sheets[0].row_count == 100
        assert state.sheets[0].sample_data is None
        assert transport.calls == [
            ("get_spreadsheet", "sheet-1", "sheets.properties")
        ]

    async def test_sample_tier_ranges(
        self, diff_engine: DiffEngine, transport: FakeTransport
    ) -> None:
        await diff_engine.capture_state("sheet-1", tier=DiffTier.SAMPLE)

        ranges = {arg for name, _, arg in transport.calls if name == "get_values"}
        assert ranges == {"'Sheet1'!A1:ZZ10", "'Sheet1'!A91:ZZ100"}

    async def test_small_sheet_has_no_last_sample(
        self, rate_limiter: RateLimiter
    ) -> None:
        transport = FakeTransport(
            {"s": make_spreadsheet("s", ((0, "Tiny", 15, 3),))}
        )
        engine = DiffEngine(transport, rate_limiter=rate_limiter)

        state = await engine.capture_state("s", tier=DiffTier.SAMPLE)

        assert transport.count("get_values") == 1
        assert state.sheets[0].sample_data is not None
        assert state.sheets[0].sample_data.last_rows == []

    async def test_full_tier_range_bounded_by_cell_budget(
        self, diff_engine: DiffEngine, transport: FakeTransport
    ) -> None:
        await diff_engine.capture_state(
            "sheet-1", tier=DiffTier.FULL, max_full_diff_cells=260
        )

        ranges = [arg for name, _, arg in transport.calls if name == "get_values"]
        assert "'Sheet1'!A1:Z10" in ranges

    async def test_failed_range_reads_as_empty(
        self, diff_engine: DiffEngine, transport: FakeTransport
    ) -> None:
        transport.errors["get_values"] = APIError("boom", status_code=500)

        state = await diff_engine.capture_state("sheet-1", tier=DiffTier.SAMPLE)

        assert state.sheets[0].sample_data is not None

    async def test_requires_fetcher(self) -> None:
        with pytest.raises(RuntimeError, match="no fetcher"):
            await DiffEngine().capture_state("sheet-1")

    async def test_reads_consume_tokens(
        self, diff_engine: DiffEngine, rate_limiter: RateLimiter
    ) -> None:
        await diff_engine.capture_state("sheet-1", tier=DiffTier.SAMPLE)
        assert rate_limiter.bucket("read").tokens == pytest.approx(297)

    async def test_capture_range_state(
        self, diff_engine: DiffEngine, transport: FakeTransport
    ) -> None:
        transport.values["A1:B2"] = [[1, 2], [3, 4]]

        state = await diff_engine.capture_range_state("sheet-1", "A1:B2")

        assert state.row_count == 2
        assert state.checksum == checksum([[1, 2], [3, 4]])


class TestCaptureFromResponse:
    """Tests for building state from a payload already in hand."""

    def test_grid_data_used_for_full(self) -> None:
        engine = DiffEngine(block_size=2)
        spreadsheet = {"sheets": [_grid_sheet(0, "Data", [["a"], ["b"], ["c"]])]}

        state = engine.capture_state_from_response(
            "s", spreadsheet, tier=DiffTier.FULL
        )

        sheet = state.sheets[0]
        assert sheet.values == [["a"], ["b"], ["c"]]
        assert sheet.block_checksums is not None
        assert len(sheet.block_checksums) == 2

    def test_grid_data_used_for_sample(self) -> None:
        engine = DiffEngine()
        rows = [[str(i)] for i in range(30)]
        spreadsheet = {"sheets": [_grid_sheet(0, "Data", rows)]}

        state = engine.capture_state_from_response(
            "s", spreadsheet, tier=DiffTier.SAMPLE, sample_size=5
        )

        samples = state.sheets[0].sample_data
        assert samples is not None
        assert samples.first_rows == rows[:5]
        assert samples.last_rows == rows[25:]
        assert samples.last_rows_start == 25

    def test_same_payload_same_checksum(self) -> None:
        engine = DiffEngine()
        spreadsheet = make_spreadsheet("s")

        first = engine.capture_state_from_response("s", spreadsheet)
        second = engine.capture_state_from_response("s", spreadsheet)

        assert first.checksum == second.checksum

    def test_range_state_from_update(self) -> None:
        state = DiffEngine().capture_range_state_from_response(
            "A1:B1", {"range": "A1:B1", "values": [["x", "y"]]}
        )
        assert state.row_count == 1
        assert state.values == [["x", "y"]]

    def test_range_state_without_data(self) -> None:
        state = DiffEngine().capture_range_state_from_response("A1", None)
        assert state.row_count == 0
        assert state.values == []


class TestMetadataDiff:
    """Tests for the METADATA tier."""

    def test_sheet_changes(self) -> None:
        engine = DiffEngine()
        before = engine.capture_state_from_response(
            "s",
            make_spreadsheet("s", ((0, "Sheet1", 100, 26), (1, "Old", 10, 5))),
            tier=DiffTier.METADATA,
        )
        after = engine.capture_state_from_response(
            "s",
            make_spreadsheet(
                "s", ((0, "Renamed", 120, 26), (2, "New", 10, 10), (3, "Extra", 1, 1))
            ),
            tier=DiffTier.METADATA,
        )

        result = engine.metadata_diff(before, after)

        assert result.sheet_changes.added == [
            {"sheet_id": 2, "title": "New"},
            {"sheet_id": 3, "title": "Extra"},
        ]
        assert result.sheet_changes.removed == [{"sheet_id": 1, "title": "Old"}]
        assert result.sheet_changes.renamed == [
            {"sheet_id": 0, "old_title": "Sheet1", "new_title": "Renamed"}
        ]
        assert result.rows_changed == 21
        assert result.sheets[0].rows_before == 100
        assert result.sheets[0].rows_after == 120
        assert result.sheets[0].checksum_changed

    def test_unchanged_estimates_zero(self) -> None:
        engine = DiffEngine()
        state = engine.capture_state_from_response("s", make_spreadsheet("s"))

        result = engine.metadata_diff(state, state)

        assert result.estimated_cells_changed == 0
        assert result.rows_changed == 0

    def test_structural_change_estimate(self) -> None:
        engine = DiffEngine()
        before = engine.capture_state_from_response("s", make_spreadsheet("s"))
        resized = engine.capture_state_from_response(
            "s", make_spreadsheet("s", ((0, "Sheet1", 200, 26),))
        )
        added = engine.capture_state_from_response(
            "s", make_spreadsheet("s", ((0, "Sheet1", 100, 26), (1, "B", 10, 10)))
        )

        assert engine.estimate_changed_cells(before, resized) == 520
        assert engine.estimate_changed_cells(before, added) == 2700


class TestSampleDiff:
    """Tests for the SAMPLE tier."""

    async def test_detects_changed_cell(
        self, diff_engine: DiffEngine, transport: FakeTransport
    ) -> None:
        transport.values["'Sheet1'!A1:ZZ10"] = [["id", "name"], [1, "alice"]]
        before = await diff_engine.capture_state("sheet-1", tier=DiffTier.SAMPLE)
        transport.values["'Sheet1'!A1:ZZ10"] = [["id", "name"], [1, "bob"]]
        after = await diff_engine.capture_state("sheet-1", tier=DiffTier.SAMPLE)

        result = await diff_engine.diff(before, after, tier=DiffTier.SAMPLE)

        assert isinstance(result, SampleDiff)
        assert [(c.cell, c.before, c.after) for c in result.first_rows] == [
            ("'Sheet1'!B2", "alice", "bob")
        ]
        assert result.last_rows == []
        assert result.rows_changed == 1
        assert result.cells_sampled == 4

    async def test_last_rows_compared(
        self, diff_engine: DiffEngine, transport: FakeTransport
    ) -> None:
        transport.values["'Sheet1'!A91:ZZ100"] = [["x"]]
        before = await diff_engine.capture_state("sheet-1", tier=DiffTier.SAMPLE)
        transport.values["'Sheet1'!A91:ZZ100"] = [["y"]]
        after = await diff_engine.capture_state("sheet-1", tier=DiffTier.SAMPLE)

        result = await diff_engine.sample_diff(before, after)

        assert [c.cell for c in result.last_rows] == ["'Sheet1'!A91"]

    async def test_fetches_missing_after_samples(
        self, diff_engine: DiffEngine, transport: FakeTransport
    ) -> None:
        transport.values["'Sheet1'!A1:ZZ10"] = [["a"]]
        before = await diff_engine.capture_state("sheet-1", tier=DiffTier.SAMPLE)
        after = diff_engine.capture_state_from_response(
            "sheet-1", make_spreadsheet("sheet-1"), tier=DiffTier.METADATA
        )
        transport.values["'Sheet1'!A1:ZZ10"] = [["b"]]

        result = await diff_engine.sample_diff(before, after)

        assert [(c.before, c.after) for c in result.first_rows] == [("a", "b")]


class TestFullDiff:
    """Tests for the FULL tier."""

    @pytest.mark.parametrize("block_size", [1, 2, 1000])
    async def test_identical_states(self, block_size: int) -> None:
        engine = DiffEngine(block_size=block_size)
        values = [["a", 1], ["b", 2], ["c", 3]]

        result = await engine.full_diff(
            _state(engine, values), _state(engine, [row[:] for row in values])
        )

        assert result.changes == []
        assert result.cells_changed == 0
        assert result.changed_blocks == {}
        assert not result.truncated

    async def test_only_changed_block_compared(self) -> None:
        engine = DiffEngine(block_size=2)
        before = [["a"], ["b"], ["c"], ["d"], ["e"]]
        after = [["a"], ["b"], ["c"], ["D"], ["e"]]

        result = await engine.full_diff(_state(engine, before), _state(engine, after))

        assert result.changed_blocks == {0: [1]}
        assert result.cells_compared == 2
        assert [(c.cell, c.before, c.after) for c in result.changes] == [
            ("'Sheet1'!A4", "d", "D")
        ]

    async def test_added_and_removed_cells(self) -> None:
        engine = DiffEngine()
        before = [["a", "b"]]
        after = [["a"], ["new"]]

        result = await engine.full_diff(_state(engine, before), _state(engine, after))

        assert result.cells_added == 1
        assert result.cells_removed == 1
        assert result.cells_changed == 2

    async def test_budget_truncates(self) -> None:
        engine = DiffEngine()
        before = [[i] for i in range(10)]
        after = [[i + 100] for i in range(10)]

        result = await engine.full_diff(
            _state(engine, before), _state(engine, after), max_full_diff_cells=4
        )

        assert result.truncated
        assert result.cells_compared == 4
        assert result.cells_changed == 4

    async def test_removed_sheet_counts_cells(self) -> None:
        engine = DiffEngine()
        before = _state(engine, [["a"]])
        before.sheets.append(
            SheetState(
                sheet_id=9, title="Gone", row_count=3, column_count=2, checksum="x"
            )
        )

        result = await engine.full_diff(before, _state(engine, [["a"]]))

        assert result.cells_removed == 6
        assert result.sheet_changes.removed == [{"sheet_id": 9, "title": "Gone"}]

    def test_identify_changed_blocks(self) -> None:
        assert DiffEngine.identify_changed_blocks(["a", "b"], ["a", "c", "d"]) == [
            1,
            2,
        ]
        assert DiffEngine.identify_changed_blocks([], []) == []


class TestBlankCells:
    """Tests for blank cells read through different endpoints."""

    @pytest.fixture
    def blank_transport(self) -> FakeTransport:
        transport = FakeTransport(
            {"s": make_spreadsheet("s", ((0, "Sheet1", 3, 3),))}
        )
        transport.values["'Sheet1'!A1:C3"] = [["a", "", "c"], ["b", ""]]
        return transport

    async def test_fetched_blanks_normalized(
        self, blank_transport: FakeTransport
    ) -> None:
        state = await DiffEngine(blank_transport).capture_state(
            "s", tier=DiffTier.FULL
        )

        assert state.sheets[0].values == [["a", None, "c"], ["b"]]

    async def test_grid_blanks_match_fetched_values(
        self, blank_transport: FakeTransport
    ) -> None:
        engine = DiffEngine(blank_transport)
        before = await engine.capture_state("s", tier=DiffTier.FULL)
        text = [{"effectiveValue": {"stringValue": v}} for v in ("a", "b", "c")]
        sheet = {
            "properties": {
                "sheetId": 0,
                "title": "Sheet1",
                "gridProperties": {"rowCount": 3, "columnCount": 3},
            },
            "data": [
                {
                    "rowData": [
                        {"values": [text[0], {}, text[2]]},
                        {"values": [text[1], {}, {}]},
                        {"values": [{}, {}, {}]},
                    ]
                }
            ],
        }
        after = engine.capture_state_from_response(
            "s", {"sheets": [sheet]}, tier=DiffTier.FULL
        )

        result = await engine.full_diff(before, after)

        assert after.sheets[0].values == before.sheets[0].values
        assert after.checksum == before.checksum
        assert result.changes == []
        assert result.changed_blocks == {}


class TestDiffFromResponse:
    """Tests for diffs built from mutation replies."""

    def test_added_sheets_and_counts(self) -> None:
        metadata = ResponseParser().parse_batch_update_response(
            {
                "replies": [
                    {
                        "addSheet": {
                            "properties": {
                                "sheetId": 5,
                                "title": "New",
                                "gridProperties": {"rowCount": 10, "columnCount": 2},
                            }
                        }
                    }
                ]
            }
        )

        result = DiffEngine().diff_from_response(metadata, estimated_cells=999)

        assert isinstance(result, MetadataDiff)
        assert result.tier is DiffTier.METADATA
        assert result.sheet_changes.added == [{"sheet_id": 5}]
        assert result.estimated_cells_changed == 20
        assert result.rows_changed == 10

    def test_falls_back_to_estimate(self) -> None:
        metadata = ResponseParser().parse_batch_update_response({"replies": [{}]})

        result = DiffEngine().diff_from_response(metadata, estimated_cells=30)

        assert result.estimated_cells_changed == 30

    def test_estimate_diff(self) -> None:
        result = DiffEngine().estimate_diff(1234)
        assert result.estimated_cells_changed == 1234
        assert result.sheet_changes.added == []

    def test_result_tiers(self) -> None:
        assert SampleDiff.tier is DiffTier.SAMPLE
        assert FullDiff.tier is DiffTier.FULL
