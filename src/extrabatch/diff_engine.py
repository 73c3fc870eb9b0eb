"""Tiered before/after comparison of spreadsheet state.

Tiers, in ascending cost:
- METADATA: per-sheet dimensions and checksums, sheets added/removed/renamed
- SAMPLE: additionally compares the first and last N rows of every sheet
- FULL: cell-level comparison accelerated by per-block row checksums; only
  blocks whose checksum differs are cell-diffed, stopping once
  ``max_full_diff_cells`` cells have been compared

State is either fetched (``capture_state``) or derived from a payload that a
mutation call already returned (``capture_state_from_response``,
``diff_from_response``), which costs no extra network calls.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

from loguru import logger

from extrabatch.transport import TransportError
from extrabatch.utils import (
    cell_to_a1,
    checksum,
    column_index_to_letter,
    escape_sheet_title,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from extrabatch.rate_limiter import RateLimiter
    from extrabatch.response_parser import ParsedResponseMetadata

# Widest column fetched for samples (ZZ).
MAX_SAMPLE_COLUMN_INDEX = 701


class DiffTier(Enum):
    """Diff tiers. Comparison operators order them by cost."""

    METADATA = "METADATA"
    SAMPLE = "SAMPLE"
    FULL = "FULL"

    @property
    def cost(self) -> int:
        return _TIER_COST[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, DiffTier):
            return NotImplemented
        return self.cost < other.cost

    def __le__(self, other: object) -> bool:
        if not isinstance(other, DiffTier):
            return NotImplemented
        return self.cost <= other.cost


_TIER_COST = {DiffTier.METADATA: 0, DiffTier.SAMPLE: 1, DiffTier.FULL: 2}


class StateFetcher(Protocol):
    """Read access needed to capture state. Satisfied by Transport."""

    async def get_spreadsheet(
        self,
        spreadsheet_id: str,
        *,
        fields: str | None = None,
        include_grid_data: bool = False,
        ranges: Sequence[str] = (),
    ) -> dict[str, Any]: ...

    async def get_values(
        self,
        spreadsheet_id: str,
        range_a1: str,
        *,
        value_render_option: str = "UNFORMATTED_VALUE",
    ) -> list[list[Any]]: ...


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


@dataclass
class SheetSamples:
    first_rows: list[list[Any]] = field(default_factory=list)
    last_rows: list[list[Any]] = field(default_factory=list)
    last_rows_start: int = 0


@dataclass
class SheetState:
    sheet_id: int
    title: str
    row_count: int
    column_count: int
    checksum: str
    block_checksums: list[str] | None = None
    sample_data: SheetSamples | None = None
    values: list[list[Any]] | None = None


@dataclass
class SpreadsheetState:
    """Transient snapshot of a spreadsheet, captured only to compute a diff."""

    timestamp: str
    spreadsheet_id: str
    sheets: list[SheetState]
    checksum: str


@dataclass(frozen=True)
class RangeState:
    checksum: str
    row_count: int
    values: list[list[Any]]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StateSummary:
    timestamp: str
    row_count: int
    column_count: int
    checksum: str


@dataclass
class SheetChanges:
    added: list[dict[str, Any]] = field(default_factory=list)
    removed: list[dict[str, Any]] = field(default_factory=list)
    renamed: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class SheetDelta:
    """Per-sheet dimension and checksum comparison."""

    sheet_id: int
    title: str
    rows_before: int
    rows_after: int
    columns_before: int
    columns_after: int
    checksum_changed: bool


@dataclass(frozen=True)
class CellChange:
    cell: str
    before: Any
    after: Any
    type: str = "value"


@dataclass
class MetadataDiff:
    tier: ClassVar[DiffTier] = DiffTier.METADATA

    before: StateSummary
    after: StateSummary
    rows_changed: int
    estimated_cells_changed: int
    sheet_changes: SheetChanges = field(default_factory=SheetChanges)
    sheets: list[SheetDelta] = field(default_factory=list)


@dataclass
class SampleDiff:
    tier: ClassVar[DiffTier] = DiffTier.SAMPLE

    first_rows: list[CellChange]
    last_rows: list[CellChange]
    rows_changed: int
    cells_sampled: int
    checksum_changed: bool
    sheet_changes: SheetChanges = field(default_factory=SheetChanges)


@dataclass
class FullDiff:
    tier: ClassVar[DiffTier] = DiffTier.FULL

    changes: list[CellChange]
    cells_added: int
    cells_removed: int
    cells_compared: int
    changed_blocks: dict[int, list[int]]
    truncated: bool = False
    sheet_changes: SheetChanges = field(default_factory=SheetChanges)

    @property
    def cells_changed(self) -> int:
        return len(self.changes)


DiffResult = MetadataDiff | SampleDiff | FullDiff


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _cell_value(cell: dict[str, Any]) -> Any:
    """Value of a CellData: effective number/string/bool, else formatted."""
    effective = cell.get("effectiveValue") or {}
    for key in ("numberValue", "stringValue", "boolValue"):
        if key in effective:
            return effective[key]
    return cell.get("formattedValue")


def _normalize_values(values: list[list[Any]]) -> list[list[Any]]:
    """Blank cells read as None with trailing blanks dropped.

    The values API pads interior gaps with "" and omits trailing cells, while
    grid data returns an empty CellData for every blank. Both shapes must
    compare and checksum the same.
    """
    rows: list[list[Any]] = []
    for row in values:
        cells = [None if cell == "" else cell for cell in row]
        while cells and cells[-1] is None:
            cells.pop()
        rows.append(cells)
    while rows and not rows[-1]:
        rows.pop()
    return rows


def _grid_values(sheet: dict[str, Any]) -> list[list[Any]] | None:
    data = sheet.get("data") or []
    if not data:
        return None
    return _normalize_values(
        [
            [_cell_value(cell) for cell in row.get("values") or []]
            for row in data[0].get("rowData") or []
        ]
    )


def _count_cells(values: list[list[Any]]) -> int:
    return sum(len(row) for row in values)


def _sheet_checksum(
    sheet_id: int,
    title: str,
    row_count: int,
    column_count: int,
    block_checksums: list[str] | None,
) -> str:
    return checksum([sheet_id, title, row_count, column_count, block_checksums])


def _spreadsheet_checksum(sheets: list[SheetState]) -> str:
    return checksum([sheet.checksum for sheet in sheets])


def _detect_sheet_changes(
    before: SpreadsheetState, after: SpreadsheetState
) -> SheetChanges:
    before_sheets = {s.sheet_id: s for s in before.sheets}
    after_sheets = {s.sheet_id: s for s in after.sheets}
    changes = SheetChanges()

    for sheet in after.sheets:
        if sheet.sheet_id not in before_sheets:
            changes.added.append({"sheet_id": sheet.sheet_id, "title": sheet.title})

    for sheet in before.sheets:
        after_sheet = after_sheets.get(sheet.sheet_id)
        if after_sheet is None:
            changes.removed.append({"sheet_id": sheet.sheet_id, "title": sheet.title})
        elif after_sheet.title != sheet.title:
            changes.renamed.append(
                {
                    "sheet_id": sheet.sheet_id,
                    "old_title": sheet.title,
                    "new_title": after_sheet.title,
                }
            )
    return changes


class DiffEngine:
    """Captures spreadsheet state and compares two captures."""

    def __init__(
        self,
        fetcher: StateFetcher | None = None,
        *,
        rate_limiter: RateLimiter | None = None,
        default_tier: DiffTier = DiffTier.SAMPLE,
        sample_size: int = 10,
        max_full_diff_cells: int = 5000,
        block_size: int = 1000,
        sample_threshold: int = 100,
        full_threshold: int = 5000,
        concurrency: int = 10,
    ) -> None:
        if block_size < 1:
            raise ValueError("block_size must be at least 1")
        if sample_threshold > full_threshold:
            raise ValueError("sample_threshold must not exceed full_threshold")
        self._fetcher = fetcher
        self._rate_limiter = rate_limiter
        self.default_tier = default_tier
        self.sample_size = sample_size
        self.max_full_diff_cells = max_full_diff_cells
        self.block_size = block_size
        self.sample_threshold = sample_threshold
        self.full_threshold = full_threshold
        self.concurrency = concurrency

    @property
    def has_fetcher(self) -> bool:
        return self._fetcher is not None

    @property
    def rate_limiter(self) -> RateLimiter | None:
        return self._rate_limiter

    def use_rate_limiter(self, rate_limiter: RateLimiter) -> None:
        """Route state reads through ``rate_limiter`` unless one is already set."""
        if self._rate_limiter is None:
            self._rate_limiter = rate_limiter

    def select_tier(self, cell_count: int) -> DiffTier:
        """Pick a tier for a change touching ``cell_count`` cells.

        Larger changes never get a cheaper tier than smaller ones.
        """
        if cell_count < self.sample_threshold:
            return DiffTier.METADATA
        if cell_count < self.full_threshold:
            return DiffTier.SAMPLE
        return DiffTier.FULL

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def capture_state(
        self,
        spreadsheet_id: str,
        *,
        tier: DiffTier | None = None,
        sample_size: int | None = None,
        max_full_diff_cells: int | None = None,
    ) -> SpreadsheetState:
        """Fetch the state needed for a diff at ``tier``.

        Prefer capture_state_from_response() for the after side of a
        mutation; it costs no extra calls.
        """
        fetcher = self._require_fetcher()
        tier = tier or self.default_tier
        sample_size = sample_size or self.sample_size
        max_cells = max_full_diff_cells or self.max_full_diff_cells

        await self._acquire_read()
        spreadsheet = await fetcher.get_spreadsheet(
            spreadsheet_id, fields="sheets.properties"
        )

        semaphore = asyncio.Semaphore(self.concurrency)

        async def capture_sheet(properties: dict[str, Any]) -> SheetState:
            async with semaphore:
                return await self._capture_sheet(
                    spreadsheet_id, properties, tier, sample_size, max_cells
                )

        sheets = await asyncio.gather(
            *(
                capture_sheet(sheet["properties"])
                for sheet in spreadsheet.get("sheets") or []
                if sheet.get("properties")
            )
        )
        return SpreadsheetState(
            timestamp=_now(),
            spreadsheet_id=spreadsheet_id,
            sheets=list(sheets),
            checksum=_spreadsheet_checksum(list(sheets)),
        )

    async def _capture_sheet(
        self,
        spreadsheet_id: str,
        properties: dict[str, Any],
        tier: DiffTier,
        sample_size: int,
        max_cells: int,
    ) -> SheetState:
        sheet_id = properties.get("sheetId", 0)
        title = properties.get("title", "")
        grid = properties.get("gridProperties") or {}
        row_count = grid.get("rowCount", 0)
        column_count = grid.get("columnCount", 0)
        quoted = escape_sheet_title(title)

        sample_data = None
        if tier is not DiffTier.METADATA:
            sample_data = await self._fetch_samples(
                spreadsheet_id, quoted, row_count, sample_size
            )

        values = None
        block_checksums = None
        if tier is DiffTier.FULL:
            values = await self._fetch_values(
                spreadsheet_id, quoted, row_count, column_count, max_cells
            )
            block_checksums = self.compute_block_checksums(values)

        return SheetState(
            sheet_id=sheet_id,
            title=title,
            row_count=row_count,
            column_count=column_count,
            checksum=_sheet_checksum(
                sheet_id, title, row_count, column_count, block_checksums
            ),
            block_checksums=block_checksums,
            sample_data=sample_data,
            values=values,
        )

    async def _fetch_samples(
        self,
        spreadsheet_id: str,
        quoted_title: str,
        row_count: int,
        sample_size: int,
    ) -> SheetSamples:
        first_range = f"{quoted_title}!A1:ZZ{sample_size}"
        if row_count > sample_size * 2:
            last_start = row_count - sample_size
            last_range = f"{quoted_title}!A{last_start + 1}:ZZ{row_count}"
            first_rows, last_rows = await asyncio.gather(
                self._get_range_values(spreadsheet_id, first_range),
                self._get_range_values(spreadsheet_id, last_range),
            )
            return SheetSamples(first_rows, last_rows, last_start)
        first_rows = await self._get_range_values(spreadsheet_id, first_range)
        return SheetSamples(first_rows=first_rows)

    async def _fetch_values(
        self,
        spreadsheet_id: str,
        quoted_title: str,
        row_count: int,
        column_count: int,
        max_cells: int,
    ) -> list[list[Any]]:
        max_rows = min(row_count, math.ceil(max_cells / max(column_count, 1)))
        if max_rows <= 0:
            return []
        end_column = column_index_to_letter(
            min(max(column_count - 1, 0), MAX_SAMPLE_COLUMN_INDEX)
        )
        return await self._get_range_values(
            spreadsheet_id, f"{quoted_title}!A1:{end_column}{max_rows}"
        )

    async def capture_range_state(
        self, spreadsheet_id: str, range_a1: str
    ) -> RangeState:
        """Fetch the values of one range."""
        fetcher = self._require_fetcher()
        await self._acquire_read()
        values = await fetcher.get_values(spreadsheet_id, range_a1)
        return RangeState(
            checksum=checksum(values), row_count=len(values), values=values
        )

    def capture_state_from_response(
        self,
        spreadsheet_id: str,
        spreadsheet: dict[str, Any],
        *,
        tier: DiffTier | None = None,
        sample_size: int | None = None,
    ) -> SpreadsheetState:
        """Build state from a Spreadsheet payload already in hand.

        Works on the ``updatedSpreadsheet`` of a batchUpdate response (or a
        spreadsheets.get result). Grid data is only used when present.
        """
        tier = tier or self.default_tier
        sample_size = sample_size or self.sample_size
        sheets: list[SheetState] = []

        for sheet in spreadsheet.get("sheets") or []:
            properties = sheet.get("properties")
            if not properties:
                continue
            sheet_id = properties.get("sheetId", 0)
            title = properties.get("title", "")
            grid = properties.get("gridProperties") or {}
            row_count = grid.get("rowCount", 0)
            column_count = grid.get("columnCount", 0)

            rows = _grid_values(sheet)
            values = None
            sample_data = None
            block_checksums = None
            if rows is not None and tier is DiffTier.FULL:
                values = rows
                block_checksums = self.compute_block_checksums(values)
            elif rows is not None and tier is DiffTier.SAMPLE:
                sample_data = SheetSamples(first_rows=rows[:sample_size])
                if row_count > sample_size * 2:
                    sample_data.last_rows_start = row_count - sample_size
                    sample_data.last_rows = rows[row_count - sample_size :]

            sheets.append(
                SheetState(
                    sheet_id=sheet_id,
                    title=title,
                    row_count=row_count,
                    column_count=column_count,
                    checksum=_sheet_checksum(
                        sheet_id, title, row_count, column_count, block_checksums
                    ),
                    block_checksums=block_checksums,
                    sample_data=sample_data,
                    values=values,
                )
            )

        return SpreadsheetState(
            timestamp=_now(),
            spreadsheet_id=spreadsheet_id,
            sheets=sheets,
            checksum=_spreadsheet_checksum(sheets),
        )

    def capture_range_state_from_response(
        self, range_a1: str, updated_data: dict[str, Any] | None
    ) -> RangeState:
        """Build range state from a ValueRange returned by a values update."""
        values: list[list[Any]] = (updated_data or {}).get("values") or []
        return RangeState(
            checksum=checksum(values), row_count=len(values), values=values
        )

    # ------------------------------------------------------------------
    # Diff
    # ------------------------------------------------------------------

    async def diff(
        self,
        before: SpreadsheetState,
        after: SpreadsheetState,
        *,
        tier: DiffTier | None = None,
        sample_size: int | None = None,
        max_full_diff_cells: int | None = None,
    ) -> DiffResult:
        tier = tier or self.default_tier
        if tier is DiffTier.FULL:
            return await self.full_diff(before, after, max_full_diff_cells)
        if tier is DiffTier.SAMPLE:
            return await self.sample_diff(before, after, sample_size)
        return self.metadata_diff(before, after)

    def metadata_diff(
        self, before: SpreadsheetState, after: SpreadsheetState
    ) -> MetadataDiff:
        before_rows = sum(s.row_count for s in before.sheets)
        after_rows = sum(s.row_count for s in after.sheets)
        before_sheets = {s.sheet_id: s for s in before.sheets}

        deltas = []
        for sheet in after.sheets:
            previous = before_sheets.get(sheet.sheet_id)
            if previous is None:
                continue
            deltas.append(
                SheetDelta(
                    sheet_id=sheet.sheet_id,
                    title=sheet.title,
                    rows_before=previous.row_count,
                    rows_after=sheet.row_count,
                    columns_before=previous.column_count,
                    columns_after=sheet.column_count,
                    checksum_changed=previous.checksum != sheet.checksum,
                )
            )

        return MetadataDiff(
            before=StateSummary(
                timestamp=before.timestamp,
                row_count=before_rows,
                column_count=sum(s.column_count for s in before.sheets),
                checksum=before.checksum,
            ),
            after=StateSummary(
                timestamp=after.timestamp,
                row_count=after_rows,
                column_count=sum(s.column_count for s in after.sheets),
                checksum=after.checksum,
            ),
            rows_changed=abs(after_rows - before_rows),
            estimated_cells_changed=self.estimate_changed_cells(before, after),
            sheet_changes=_detect_sheet_changes(before, after),
            sheets=deltas,
        )

    async def sample_diff(
        self,
        before: SpreadsheetState,
        after: SpreadsheetState,
        sample_size: int | None = None,
    ) -> SampleDiff:
        sample_size = sample_size or self.sample_size
        before_sheets = {s.sheet_id: s for s in before.sheets}
        first_changes: list[CellChange] = []
        last_changes: list[CellChange] = []
        changed_rows: set[tuple[int, int]] = set()
        cells_sampled = 0

        for sheet in after.sheets:
            previous = before_sheets.get(sheet.sheet_id)
            previous_samples = previous.sample_data if previous else None
            samples = sheet.sample_data
            if samples is None:
                samples = await self._fetch_samples(
                    after.spreadsheet_id,
                    escape_sheet_title(sheet.title),
                    sheet.row_count,
                    sample_size,
                )
                sheet.sample_data = samples

            cells_sampled += _count_cells(samples.first_rows)
            self._collect_changes(
                sheet,
                samples.first_rows,
                previous_samples.first_rows if previous_samples else [],
                0,
                first_changes,
                changed_rows,
            )

            if sheet.row_count > sample_size * 2 and samples.last_rows:
                cells_sampled += _count_cells(samples.last_rows)
                before_last: list[list[Any]] = []
                if (
                    previous_samples
                    and previous_samples.last_rows_start == samples.last_rows_start
                ):
                    before_last = previous_samples.last_rows
                self._collect_changes(
                    sheet,
                    samples.last_rows,
                    before_last,
                    samples.last_rows_start,
                    last_changes,
                    changed_rows,
                )

        return SampleDiff(
            first_rows=first_changes,
            last_rows=last_changes,
            rows_changed=len(changed_rows),
            cells_sampled=cells_sampled,
            checksum_changed=before.checksum != after.checksum,
            sheet_changes=_detect_sheet_changes(before, after),
        )

    @staticmethod
    def _collect_changes(
        sheet: SheetState,
        after_rows: list[list[Any]],
        before_rows: list[list[Any]],
        row_offset: int,
        bucket: list[CellChange],
        changed_rows: set[tuple[int, int]],
    ) -> None:
        prefix = f"{escape_sheet_title(sheet.title)}!"
        for row_index, after_row in enumerate(after_rows):
            before_row = before_rows[row_index] if row_index < len(before_rows) else []
            for col in range(max(len(after_row), len(before_row))):
                after_value = after_row[col] if col < len(after_row) else None
                before_value = before_row[col] if col < len(before_row) else None
                if after_value != before_value:
                    bucket.append(
                        CellChange(
                            cell=prefix + cell_to_a1(row_offset + row_index, col),
                            before=before_value,
                            after=after_value,
                        )
                    )
                    changed_rows.add((sheet.sheet_id, row_offset + row_index))

    async def full_diff(
        self,
        before: SpreadsheetState,
        after: SpreadsheetState,
        max_full_diff_cells: int | None = None,
    ) -> FullDiff:
        """Cell-level diff restricted to row blocks whose checksum differs."""
        budget = max_full_diff_cells or self.max_full_diff_cells
        before_sheets = {s.sheet_id: s for s in before.sheets}
        after_ids = {s.sheet_id for s in after.sheets}
        result = FullDiff(
            changes=[],
            cells_added=0,
            cells_removed=0,
            cells_compared=0,
            changed_blocks={},
            sheet_changes=_detect_sheet_changes(before, after),
        )

        for sheet in after.sheets:
            if result.cells_compared >= budget:
                result.truncated = True
                break
            remaining = budget - result.cells_compared
            previous = before_sheets.get(sheet.sheet_id)
            after_values = await self._ensure_values(
                sheet, after.spreadsheet_id, remaining
            )
            before_values = (
                await self._ensure_values(previous, before.spreadsheet_id, remaining)
                if previous
                else []
            )

            changed = self.identify_changed_blocks(
                self._block_checksums(previous, before_values),
                self._block_checksums(sheet, after_values),
            )
            if not changed:
                continue
            result.changed_blocks[sheet.sheet_id] = changed
            self._diff_blocks(
                sheet, before_values, after_values, changed, result, budget
            )

        for sheet in before.sheets:
            if sheet.sheet_id not in after_ids:
                result.cells_removed += sheet.row_count * sheet.column_count

        logger.debug(
            "Full diff computed",
            extra={
                "spreadsheet_id": after.spreadsheet_id,
                "cells_changed": result.cells_changed,
                "cells_compared": result.cells_compared,
                "truncated": result.truncated,
            },
        )
        return result

    def _diff_blocks(
        self,
        sheet: SheetState,
        before_values: list[list[Any]],
        after_values: list[list[Any]],
        changed_blocks: list[int],
        result: FullDiff,
        budget: int,
    ) -> None:
        prefix = f"{escape_sheet_title(sheet.title)}!"
        total_rows = max(len(before_values), len(after_values))

        for block in changed_blocks:
            start = block * self.block_size
            end = min(start + self.block_size, total_rows)
            for row in range(start, end):
                after_row = after_values[row] if row < len(after_values) else []
                before_row = before_values[row] if row < len(before_values) else []
                for col in range(max(len(after_row), len(before_row))):
                    if result.cells_compared >= budget:
                        result.truncated = True
                        return
                    after_value = after_row[col] if col < len(after_row) else None
                    before_value = before_row[col] if col < len(before_row) else None
                    result.cells_compared += 1
                    if after_value == before_value:
                        continue
                    result.changes.append(
                        CellChange(
                            cell=prefix + cell_to_a1(row, col),
                            before=before_value,
                            after=after_value,
                        )
                    )
                    if before_value is None:
                        result.cells_added += 1
                    elif after_value is None:
                        result.cells_removed += 1

    def diff_from_response(
        self, metadata: ParsedResponseMetadata, estimated_cells: int
    ) -> MetadataDiff:
        """METADATA diff built from parsed mutation replies, with no fetches.

        Replies rarely report cell counts, so the batch estimate stands in
        when they report none.
        """
        timestamp = _now()
        sheet_changes = SheetChanges()
        for reply in metadata.replies:
            sheet_id = reply.object_ids.get("sheet_id")
            created = reply.request_type in ("addSheet", "duplicateSheet")
            if created and sheet_id is not None:
                sheet_changes.added.append({"sheet_id": sheet_id})

        return MetadataDiff(
            before=StateSummary(timestamp, 0, 0, ""),
            after=StateSummary(
                timestamp,
                metadata.total_rows_affected,
                metadata.total_columns_affected,
                "",
            ),
            rows_changed=metadata.total_rows_affected,
            estimated_cells_changed=metadata.total_cells_affected or estimated_cells,
            sheet_changes=sheet_changes,
        )

    def estimate_diff(self, estimated_cells: int) -> MetadataDiff:
        """METADATA diff describing an estimate only (used for dry runs)."""
        timestamp = _now()
        return MetadataDiff(
            before=StateSummary(timestamp, 0, 0, ""),
            after=StateSummary(timestamp, 0, 0, ""),
            rows_changed=0,
            estimated_cells_changed=estimated_cells,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def estimate_changed_cells(
        before: SpreadsheetState, after: SpreadsheetState
    ) -> int:
        """Rough changed-cell count from checksums and structure."""
        if before.checksum == after.checksum:
            return 0
        total = sum(s.row_count * s.column_count for s in after.sheets)
        if len(before.sheets) != len(after.sheets):
            return total
        return math.ceil(total * 0.1)

    def compute_block_checksums(self, values: list[list[Any]]) -> list[str]:
        return [
            checksum(values[start : start + self.block_size])
            for start in range(0, len(values), self.block_size)
        ]

    @staticmethod
    def identify_changed_blocks(
        before_checksums: list[str], after_checksums: list[str]
    ) -> list[int]:
        """Indices of blocks that differ or exist on one side only."""
        return [
            index
            for index in range(max(len(before_checksums), len(after_checksums)))
            if (before_checksums[index] if index < len(before_checksums) else None)
            != (after_checksums[index] if index < len(after_checksums) else None)
        ]

    def _block_checksums(
        self, sheet: SheetState | None, values: list[list[Any]]
    ) -> list[str]:
        if (
            sheet is not None
            and sheet.block_checksums is not None
            and sheet.values is values
            and len(sheet.block_checksums) == math.ceil(len(values) / self.block_size)
        ):
            return sheet.block_checksums
        return self.compute_block_checksums(values)

    async def _ensure_values(
        self, sheet: SheetState, spreadsheet_id: str, remaining: int
    ) -> list[list[Any]]:
        if sheet.values is not None:
            return sheet.values
        if self._fetcher is None:
            return []
        values = await self._fetch_values(
            spreadsheet_id,
            escape_sheet_title(sheet.title),
            sheet.row_count,
            sheet.column_count,
            max(remaining, 1),
        )
        sheet.values = values
        return values

    async def _get_range_values(
        self, spreadsheet_id: str, range_a1: str
    ) -> list[list[Any]]:
        """Fetch one range. Failures are logged and read as empty."""
        if self._fetcher is None:
            return []
        await self._acquire_read()
        try:
            values = await self._fetcher.get_values(spreadsheet_id, range_a1)
        except TransportError as e:
            logger.error(
                "Failed to fetch range values for diff",
                extra={
                    "spreadsheet_id": spreadsheet_id,
                    "range": range_a1,
                    "error": str(e),
                },
            )
            return []
        return _normalize_values(values)

    async def _acquire_read(self) -> None:
        if self._rate_limiter is not None:
            await self._rate_limiter.acquire("read")

    def _require_fetcher(self) -> StateFetcher:
        if self._fetcher is None:
            raise RuntimeError("DiffEngine has no fetcher configured")
        return self._fetcher
