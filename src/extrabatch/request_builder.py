"""Build batchUpdate requests paired with routing and safety metadata.

RequestBuilder has one factory method per request kind. Each returns a
WrappedRequest holding the raw request dict, its decoded kind and the
metadata that BatchCompiler and PolicyEnforcer act on (target spreadsheet,
estimated cells touched, destructive/high-risk flags, range reference).

No I/O happens here and nothing is validated beyond structure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from extrabatch.api_types import RequestKind
from extrabatch.utils import (
    dimension_range_to_ref,
    grid_area,
    grid_range_to_ref,
    range_to_a1,
)

# Deletion and irreversible-overwrite operations.
DESTRUCTIVE_KINDS = frozenset(
    {
        RequestKind.DELETE_SHEET,
        RequestKind.DELETE_DIMENSION,
        RequestKind.TEXT_TO_COLUMNS,
        RequestKind.CUT_PASTE,
        RequestKind.FIND_REPLACE,
        RequestKind.AUTO_FILL,
        RequestKind.DELETE_CONDITIONAL_FORMAT_RULE,
        RequestKind.DELETE_FILTER_VIEW,
        RequestKind.DELETE_EMBEDDED_OBJECT,
        RequestKind.DELETE_NAMED_RANGE,
        RequestKind.DELETE_PROTECTED_RANGE,
        RequestKind.DELETE_DEVELOPER_METADATA,
        RequestKind.DELETE_BANDING,
        RequestKind.DELETE_DIMENSION_GROUP,
    }
)

# Operations with no straightforward rollback. These trigger a snapshot.
HIGH_RISK_KINDS = frozenset(
    {
        RequestKind.DELETE_SHEET,
        RequestKind.DELETE_DIMENSION,
        RequestKind.TEXT_TO_COLUMNS,
        RequestKind.RANDOMIZE_RANGE,
    }
)


class CellEstimator:
    """Heuristic cell counts for requests whose footprint is not exact.

    The constants are rough approximations, not measurements of real
    spreadsheets. Subclass or replace the instance on RequestBuilder to
    tune them.
    """

    cells_per_dimension_unit = 1000
    default_rows = 1000
    default_columns = 26
    spreadsheet_wide = 10000

    def grid(self, grid_range: dict[str, Any]) -> int:
        """Area of a GridRange, filling unbounded edges with default sizes."""
        return grid_area(grid_range, self.default_rows, self.default_columns)

    def grids(self, grid_ranges: list[dict[str, Any]]) -> int:
        return sum(self.grid(r) for r in grid_ranges)

    def dimension(self, dimension_range: dict[str, Any]) -> int:
        """Cells touched by inserting/deleting a span of rows or columns."""
        start = dimension_range.get("startIndex")
        end = dimension_range.get("endIndex")
        if start is not None and end is not None:
            count = max(end - start, 0)
        elif dimension_range.get("dimension") == "COLUMNS":
            count = self.default_columns
        else:
            count = self.default_rows
        return count * self.cells_per_dimension_unit

    def dimension_units(self, length: int) -> int:
        return length * self.cells_per_dimension_unit

    def rows(self, rows: list[dict[str, Any]]) -> int:
        """Number of cells spelled out in a list of RowData."""
        return sum(len(row.get("values") or []) for row in rows)


@dataclass(frozen=True)
class RequestOrigin:
    """Who asked for a request and which spreadsheet it targets.

    ``range_ref`` is an explicit target reference supplied by the caller. It
    takes precedence over the reference derived from the request body.
    """

    spreadsheet_id: str
    source_tool: str = "extrabatch"
    source_action: str = "batch_update"
    transaction_id: str | None = None
    priority: int | None = None
    range_ref: str | None = None


@dataclass(frozen=True)
class RequestMetadata:
    """Routing and safety metadata attached to a request."""

    source_tool: str
    source_action: str
    spreadsheet_id: str
    destructive: bool
    high_risk: bool
    transaction_id: str | None = None
    priority: int | None = None
    estimated_cells: int | None = None
    sheet_id: int | None = None
    range_ref: str | None = None


@dataclass(frozen=True)
class WrappedRequest:
    """A batchUpdate request paired with its metadata."""

    request: dict[str, Any]
    kind: RequestKind
    metadata: RequestMetadata

    @property
    def spreadsheet_id(self) -> str:
        return self.metadata.spreadsheet_id


def _compact(payload: dict[str, Any]) -> dict[str, Any]:
    """Drop unset optional fields."""
    return {key: value for key, value in payload.items() if value is not None}


def _anchor_sheet_id(position: dict[str, Any] | None) -> int | None:
    if not position:
        return None
    anchor = (position.get("overlayPosition") or {}).get("anchorCell") or {}
    sheet_id = anchor.get("sheetId")
    if sheet_id is None:
        sheet_id = position.get("sheetId")
    return sheet_id


def _data_filter_ref(data_filter: dict[str, Any]) -> str | None:
    if data_filter.get("a1Range"):
        return str(data_filter["a1Range"])
    if data_filter.get("gridRange"):
        return grid_range_to_ref(data_filter["gridRange"])
    lookup = data_filter.get("developerMetadataLookup") or {}
    if lookup.get("metadataId") is not None:
        return f"developerMetadata/{lookup['metadataId']}"
    if lookup.get("metadataKey"):
        return f"developerMetadata/{lookup['metadataKey']}"
    return None


class RequestBuilder:
    """Factory for WrappedRequests, one method per batchUpdate request kind."""

    def __init__(self, estimator: CellEstimator | None = None) -> None:
        self.estimator = estimator or CellEstimator()

    def _wrap(
        self,
        origin: RequestOrigin,
        kind: RequestKind,
        body: dict[str, Any],
        *,
        estimated_cells: int | None = None,
        sheet_id: int | None = None,
        range_ref: str | None = None,
        destructive: bool | None = None,
    ) -> WrappedRequest:
        if destructive is None:
            destructive = kind in DESTRUCTIVE_KINDS
        metadata = RequestMetadata(
            source_tool=origin.source_tool,
            source_action=origin.source_action,
            spreadsheet_id=origin.spreadsheet_id,
            destructive=destructive,
            high_risk=kind in HIGH_RISK_KINDS,
            transaction_id=origin.transaction_id,
            priority=origin.priority,
            estimated_cells=estimated_cells,
            sheet_id=sheet_id,
            range_ref=origin.range_ref or range_ref,
        )
        return WrappedRequest(
            request={kind.value: _compact(body)}, kind=kind, metadata=metadata
        )

    # ------------------------------------------------------------------
    # Cells
    # ------------------------------------------------------------------

    def update_cells(
        self,
        origin: RequestOrigin,
        *,
        rows: list[dict[str, Any]],
        range: dict[str, Any] | None = None,
        start: dict[str, Any] | None = None,
        fields: str = "*",
    ) -> WrappedRequest:
        """Write RowData into a range, or starting at a grid coordinate."""
        range_ref = None
        sheet_id = None
        if range is not None:
            estimated = self.estimator.grid(range)
            range_ref = grid_range_to_ref(range)
            sheet_id = range.get("sheetId")
        else:
            estimated = self.estimator.rows(rows)
            if start is not None:
                sheet_id = start.get("sheetId")
                row = start.get("rowIndex", 0)
                col = start.get("columnIndex", 0)
                width = max((len(r.get("values") or []) for r in rows), default=0)
                if rows and width:
                    a1 = range_to_a1(row, row + len(rows), col, col + width)
                    range_ref = f"{sheet_id or 0}!{a1}"
        return self._wrap(
            origin,
            RequestKind.UPDATE_CELLS,
            {"rows": rows, "range": range, "start": start, "fields": fields},
            estimated_cells=estimated,
            sheet_id=sheet_id,
            range_ref=range_ref,
        )

    def repeat_cell(
        self,
        origin: RequestOrigin,
        *,
        range: dict[str, Any],
        cell: dict[str, Any],
        fields: str,
    ) -> WrappedRequest:
        """Apply one CellData to every cell of a range."""
        return self._wrap(
            origin,
            RequestKind.REPEAT_CELL,
            {"range": range, "cell": cell, "fields": fields},
            estimated_cells=self.estimator.grid(range),
            sheet_id=range.get("sheetId"),
            range_ref=grid_range_to_ref(range),
        )

    def update_borders(
        self,
        origin: RequestOrigin,
        *,
        range: dict[str, Any],
        top: dict[str, Any] | None = None,
        bottom: dict[str, Any] | None = None,
        left: dict[str, Any] | None = None,
        right: dict[str, Any] | None = None,
        inner_horizontal: dict[str, Any] | None = None,
        inner_vertical: dict[str, Any] | None = None,
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.UPDATE_BORDERS,
            {
                "range": range,
                "top": top,
                "bottom": bottom,
                "left": left,
                "right": right,
                "innerHorizontal": inner_horizontal,
                "innerVertical": inner_vertical,
            },
            estimated_cells=self.estimator.grid(range),
            sheet_id=range.get("sheetId"),
            range_ref=grid_range_to_ref(range),
        )

    def merge_cells(
        self,
        origin: RequestOrigin,
        *,
        range: dict[str, Any],
        merge_type: str = "MERGE_ALL",
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.MERGE_CELLS,
            {"range": range, "mergeType": merge_type},
            estimated_cells=self.estimator.grid(range),
            sheet_id=range.get("sheetId"),
            range_ref=grid_range_to_ref(range),
        )

    def unmerge_cells(
        self, origin: RequestOrigin, *, range: dict[str, Any]
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.UNMERGE_CELLS,
            {"range": range},
            estimated_cells=self.estimator.grid(range),
            sheet_id=range.get("sheetId"),
            range_ref=grid_range_to_ref(range),
        )

    def copy_paste(
        self,
        origin: RequestOrigin,
        *,
        source: dict[str, Any],
        destination: dict[str, Any],
        paste_type: str = "PASTE_NORMAL",
        paste_orientation: str = "NORMAL",
    ) -> WrappedRequest:
        """Copy a range onto a destination range.

        Cells are estimated from the destination area.
        """
        return self._wrap(
            origin,
            RequestKind.COPY_PASTE,
            {
                "source": source,
                "destination": destination,
                "pasteType": paste_type,
                "pasteOrientation": paste_orientation,
            },
            estimated_cells=self.estimator.grid(destination),
            sheet_id=destination.get("sheetId"),
            range_ref=grid_range_to_ref(destination),
        )

    def cut_paste(
        self,
        origin: RequestOrigin,
        *,
        source: dict[str, Any],
        destination: dict[str, Any],
        paste_type: str = "PASTE_NORMAL",
    ) -> WrappedRequest:
        """Move a range to a destination coordinate, clearing the source."""
        return self._wrap(
            origin,
            RequestKind.CUT_PASTE,
            {"source": source, "destination": destination, "pasteType": paste_type},
            estimated_cells=self.estimator.grid(source),
            sheet_id=source.get("sheetId"),
            range_ref=grid_range_to_ref(source),
        )

    def find_replace(
        self,
        origin: RequestOrigin,
        *,
        find: str,
        replacement: str,
        range: dict[str, Any] | None = None,
        sheet_id: int | None = None,
        all_sheets: bool | None = None,
        match_case: bool | None = None,
        match_entire_cell: bool | None = None,
        search_by_regex: bool | None = None,
        include_formulas: bool | None = None,
    ) -> WrappedRequest:
        """Find and replace text in a range, one sheet, or every sheet.

        Without a range the whole sheet (or spreadsheet) is in scope, so a
        fixed large estimate is used and no range reference is derived for
        the all-sheets case.
        """
        if range is not None:
            estimated = self.estimator.grid(range)
            range_ref = grid_range_to_ref(range)
        else:
            estimated = self.estimator.spreadsheet_wide
            range_ref = f"sheet/{sheet_id}" if sheet_id is not None else None
        return self._wrap(
            origin,
            RequestKind.FIND_REPLACE,
            {
                "find": find,
                "replacement": replacement,
                "range": range,
                "sheetId": sheet_id,
                "allSheets": all_sheets,
                "matchCase": match_case,
                "matchEntireCell": match_entire_cell,
                "searchByRegex": search_by_regex,
                "includeFormulas": include_formulas,
            },
            estimated_cells=estimated,
            sheet_id=sheet_id if sheet_id is not None else (range or {}).get("sheetId"),
            range_ref=range_ref,
        )

    def set_data_validation(
        self,
        origin: RequestOrigin,
        *,
        range: dict[str, Any],
        rule: dict[str, Any] | None = None,
    ) -> WrappedRequest:
        """Set a validation rule on a range. Omitting the rule clears it."""
        return self._wrap(
            origin,
            RequestKind.SET_DATA_VALIDATION,
            {"range": range, "rule": rule},
            estimated_cells=self.estimator.grid(range),
            sheet_id=range.get("sheetId"),
            range_ref=grid_range_to_ref(range),
            destructive=rule is None,
        )

    def sort_range(
        self,
        origin: RequestOrigin,
        *,
        range: dict[str, Any],
        sort_specs: list[dict[str, Any]],
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.SORT_RANGE,
            {"range": range, "sortSpecs": sort_specs},
            estimated_cells=self.estimator.grid(range),
            sheet_id=range.get("sheetId"),
            range_ref=grid_range_to_ref(range),
        )

    def trim_whitespace(
        self, origin: RequestOrigin, *, range: dict[str, Any]
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.TRIM_WHITESPACE,
            {"range": range},
            estimated_cells=self.estimator.grid(range),
            sheet_id=range.get("sheetId"),
            range_ref=grid_range_to_ref(range),
        )

    def randomize_range(
        self, origin: RequestOrigin, *, range: dict[str, Any]
    ) -> WrappedRequest:
        """Shuffle the rows of a range. There is no way to undo the order."""
        return self._wrap(
            origin,
            RequestKind.RANDOMIZE_RANGE,
            {"range": range},
            estimated_cells=self.estimator.grid(range),
            sheet_id=range.get("sheetId"),
            range_ref=grid_range_to_ref(range),
        )

    def text_to_columns(
        self,
        origin: RequestOrigin,
        *,
        source: dict[str, Any],
        delimiter_type: str = "DETECT",
        delimiter: str | None = None,
    ) -> WrappedRequest:
        """Split a column of text. Output may overwrite adjacent columns."""
        return self._wrap(
            origin,
            RequestKind.TEXT_TO_COLUMNS,
            {"source": source, "delimiterType": delimiter_type, "delimiter": delimiter},
            estimated_cells=self.estimator.grid(source),
            sheet_id=source.get("sheetId"),
            range_ref=grid_range_to_ref(source),
        )

    def auto_fill(
        self,
        origin: RequestOrigin,
        *,
        range: dict[str, Any] | None = None,
        source_and_destination: dict[str, Any] | None = None,
        use_alternate_series: bool | None = None,
    ) -> WrappedRequest:
        """Fill cells from a pattern, either within a range or by extension."""
        estimated: int | None = None
        range_ref = None
        sheet_id = None
        if range is not None:
            estimated = self.estimator.grid(range)
            range_ref = grid_range_to_ref(range)
            sheet_id = range.get("sheetId")
        elif source_and_destination is not None:
            source = source_and_destination.get("source") or {}
            estimated = self._auto_fill_cells(source_and_destination)
            range_ref = grid_range_to_ref(source)
            sheet_id = source.get("sheetId")
        return self._wrap(
            origin,
            RequestKind.AUTO_FILL,
            {
                "range": range,
                "sourceAndDestination": source_and_destination,
                "useAlternateSeries": use_alternate_series,
            },
            estimated_cells=estimated,
            sheet_id=sheet_id,
            range_ref=range_ref,
        )

    def _auto_fill_cells(self, source_and_destination: dict[str, Any]) -> int:
        source = source_and_destination.get("source") or {}
        fill_length = abs(source_and_destination.get("fillLength") or 0)
        rows = (source.get("endRowIndex") or 0) - (source.get("startRowIndex") or 0)
        cols = (source.get("endColumnIndex") or 0) - (
            source.get("startColumnIndex") or 0
        )
        if source_and_destination.get("dimension") == "COLUMNS":
            filled = fill_length * max(rows, 0)
        else:
            filled = fill_length * max(cols, 0)
        return self.estimator.grid(source) + filled

    # ------------------------------------------------------------------
    # Sheets
    # ------------------------------------------------------------------

    def add_sheet(
        self, origin: RequestOrigin, *, properties: dict[str, Any]
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.ADD_SHEET,
            {"properties": properties},
            sheet_id=properties.get("sheetId"),
        )

    def delete_sheet(self, origin: RequestOrigin, *, sheet_id: int) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.DELETE_SHEET,
            {"sheetId": sheet_id},
            sheet_id=sheet_id,
            range_ref=f"sheet/{sheet_id}",
        )

    def update_sheet_properties(
        self,
        origin: RequestOrigin,
        *,
        properties: dict[str, Any],
        fields: str,
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.UPDATE_SHEET_PROPERTIES,
            {"properties": properties, "fields": fields},
            sheet_id=properties.get("sheetId"),
        )

    def duplicate_sheet(
        self,
        origin: RequestOrigin,
        *,
        source_sheet_id: int,
        insert_sheet_index: int | None = None,
        new_sheet_id: int | None = None,
        new_sheet_name: str | None = None,
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.DUPLICATE_SHEET,
            {
                "sourceSheetId": source_sheet_id,
                "insertSheetIndex": insert_sheet_index,
                "newSheetId": new_sheet_id,
                "newSheetName": new_sheet_name,
            },
            sheet_id=source_sheet_id,
        )

    # ------------------------------------------------------------------
    # Dimensions
    # ------------------------------------------------------------------

    def insert_dimension(
        self,
        origin: RequestOrigin,
        *,
        range: dict[str, Any],
        inherit_from_before: bool | None = None,
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.INSERT_DIMENSION,
            {"range": range, "inheritFromBefore": inherit_from_before},
            estimated_cells=self.estimator.dimension(range),
            sheet_id=range.get("sheetId"),
            range_ref=dimension_range_to_ref(range),
        )

    def delete_dimension(
        self, origin: RequestOrigin, *, range: dict[str, Any]
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.DELETE_DIMENSION,
            {"range": range},
            estimated_cells=self.estimator.dimension(range),
            sheet_id=range.get("sheetId"),
            range_ref=dimension_range_to_ref(range),
        )

    def move_dimension(
        self,
        origin: RequestOrigin,
        *,
        source: dict[str, Any],
        destination_index: int,
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.MOVE_DIMENSION,
            {"source": source, "destinationIndex": destination_index},
            sheet_id=source.get("sheetId"),
            range_ref=dimension_range_to_ref(source),
        )

    def update_dimension_properties(
        self,
        origin: RequestOrigin,
        *,
        range: dict[str, Any],
        properties: dict[str, Any],
        fields: str,
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.UPDATE_DIMENSION_PROPERTIES,
            {"range": range, "properties": properties, "fields": fields},
            sheet_id=range.get("sheetId"),
            range_ref=dimension_range_to_ref(range),
        )

    def append_dimension(
        self,
        origin: RequestOrigin,
        *,
        sheet_id: int,
        dimension: str,
        length: int,
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.APPEND_DIMENSION,
            {"sheetId": sheet_id, "dimension": dimension, "length": length},
            estimated_cells=self.estimator.dimension_units(length),
            sheet_id=sheet_id,
        )

    def auto_resize_dimensions(
        self, origin: RequestOrigin, *, dimensions: dict[str, Any]
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.AUTO_RESIZE_DIMENSIONS,
            {"dimensions": dimensions},
            sheet_id=dimensions.get("sheetId"),
            range_ref=dimension_range_to_ref(dimensions),
        )

    def add_dimension_group(
        self, origin: RequestOrigin, *, range: dict[str, Any]
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.ADD_DIMENSION_GROUP,
            {"range": range},
            sheet_id=range.get("sheetId"),
            range_ref=dimension_range_to_ref(range),
        )

    def delete_dimension_group(
        self, origin: RequestOrigin, *, range: dict[str, Any]
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.DELETE_DIMENSION_GROUP,
            {"range": range},
            sheet_id=range.get("sheetId"),
            range_ref=dimension_range_to_ref(range),
        )

    def update_dimension_group(
        self,
        origin: RequestOrigin,
        *,
        dimension_group: dict[str, Any],
        fields: str,
    ) -> WrappedRequest:
        group_range = dimension_group.get("range") or {}
        return self._wrap(
            origin,
            RequestKind.UPDATE_DIMENSION_GROUP,
            {"dimensionGroup": dimension_group, "fields": fields},
            sheet_id=group_range.get("sheetId"),
            range_ref=dimension_range_to_ref(group_range),
        )

    # ------------------------------------------------------------------
    # Conditional formatting, filters
    # ------------------------------------------------------------------

    def add_conditional_format_rule(
        self,
        origin: RequestOrigin,
        *,
        rule: dict[str, Any],
        index: int | None = None,
    ) -> WrappedRequest:
        ranges = rule.get("ranges") or []
        return self._wrap(
            origin,
            RequestKind.ADD_CONDITIONAL_FORMAT_RULE,
            {"rule": rule, "index": index},
            estimated_cells=self.estimator.grids(ranges),
            sheet_id=ranges[0].get("sheetId") if ranges else None,
            range_ref=grid_range_to_ref(ranges[0]) if len(ranges) == 1 else None,
        )

    def update_conditional_format_rule(
        self,
        origin: RequestOrigin,
        *,
        index: int,
        sheet_id: int,
        rule: dict[str, Any] | None = None,
        new_index: int | None = None,
    ) -> WrappedRequest:
        """Replace the rule at ``index``, or move it to ``new_index``."""
        return self._wrap(
            origin,
            RequestKind.UPDATE_CONDITIONAL_FORMAT_RULE,
            {"index": index, "sheetId": sheet_id, "rule": rule, "newIndex": new_index},
            sheet_id=sheet_id,
        )

    def delete_conditional_format_rule(
        self, origin: RequestOrigin, *, index: int, sheet_id: int
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.DELETE_CONDITIONAL_FORMAT_RULE,
            {"index": index, "sheetId": sheet_id},
            sheet_id=sheet_id,
            range_ref=f"conditionalFormat/{sheet_id}/{index}",
        )

    def set_basic_filter(
        self, origin: RequestOrigin, *, filter: dict[str, Any]
    ) -> WrappedRequest:
        filter_range = filter.get("range") or {}
        return self._wrap(
            origin,
            RequestKind.SET_BASIC_FILTER,
            {"filter": filter},
            sheet_id=filter_range.get("sheetId"),
            range_ref=grid_range_to_ref(filter_range),
        )

    def clear_basic_filter(
        self, origin: RequestOrigin, *, sheet_id: int
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.CLEAR_BASIC_FILTER,
            {"sheetId": sheet_id},
            sheet_id=sheet_id,
        )

    def add_filter_view(
        self, origin: RequestOrigin, *, filter: dict[str, Any]
    ) -> WrappedRequest:
        filter_range = filter.get("range") or {}
        return self._wrap(
            origin,
            RequestKind.ADD_FILTER_VIEW,
            {"filter": filter},
            sheet_id=filter_range.get("sheetId"),
        )

    def update_filter_view(
        self, origin: RequestOrigin, *, filter: dict[str, Any], fields: str
    ) -> WrappedRequest:
        filter_range = filter.get("range") or {}
        return self._wrap(
            origin,
            RequestKind.UPDATE_FILTER_VIEW,
            {"filter": filter, "fields": fields},
            sheet_id=filter_range.get("sheetId"),
        )

    def delete_filter_view(
        self, origin: RequestOrigin, *, filter_id: int
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.DELETE_FILTER_VIEW,
            {"filterId": filter_id},
            range_ref=f"filterView/{filter_id}",
        )

    # ------------------------------------------------------------------
    # Embedded objects
    # ------------------------------------------------------------------

    def add_chart(
        self, origin: RequestOrigin, *, chart: dict[str, Any]
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.ADD_CHART,
            {"chart": chart},
            sheet_id=_anchor_sheet_id(chart.get("position")),
        )

    def update_chart_spec(
        self, origin: RequestOrigin, *, chart_id: int, spec: dict[str, Any]
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.UPDATE_CHART_SPEC,
            {"chartId": chart_id, "spec": spec},
        )

    def delete_embedded_object(
        self, origin: RequestOrigin, *, object_id: int
    ) -> WrappedRequest:
        """Delete a chart, slicer or other embedded object by id."""
        return self._wrap(
            origin,
            RequestKind.DELETE_EMBEDDED_OBJECT,
            {"objectId": object_id},
            range_ref=f"embeddedObject/{object_id}",
        )

    def add_slicer(
        self, origin: RequestOrigin, *, slicer: dict[str, Any]
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.ADD_SLICER,
            {"slicer": slicer},
            sheet_id=_anchor_sheet_id(slicer.get("position")),
        )

    def update_slicer_spec(
        self,
        origin: RequestOrigin,
        *,
        slicer_id: int,
        spec: dict[str, Any],
        fields: str,
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.UPDATE_SLICER_SPEC,
            {"slicerId": slicer_id, "spec": spec, "fields": fields},
        )

    # ------------------------------------------------------------------
    # Named and protected ranges
    # ------------------------------------------------------------------

    def add_named_range(
        self, origin: RequestOrigin, *, named_range: dict[str, Any]
    ) -> WrappedRequest:
        named = named_range.get("range") or {}
        return self._wrap(
            origin,
            RequestKind.ADD_NAMED_RANGE,
            {"namedRange": named_range},
            sheet_id=named.get("sheetId"),
            range_ref=grid_range_to_ref(named),
        )

    def update_named_range(
        self,
        origin: RequestOrigin,
        *,
        named_range: dict[str, Any],
        fields: str,
    ) -> WrappedRequest:
        named = named_range.get("range") or {}
        return self._wrap(
            origin,
            RequestKind.UPDATE_NAMED_RANGE,
            {"namedRange": named_range, "fields": fields},
            sheet_id=named.get("sheetId"),
            range_ref=grid_range_to_ref(named),
        )

    def delete_named_range(
        self, origin: RequestOrigin, *, named_range_id: str
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.DELETE_NAMED_RANGE,
            {"namedRangeId": named_range_id},
            range_ref=f"namedRange/{named_range_id}",
        )

    def add_protected_range(
        self, origin: RequestOrigin, *, protected_range: dict[str, Any]
    ) -> WrappedRequest:
        protected = protected_range.get("range") or {}
        return self._wrap(
            origin,
            RequestKind.ADD_PROTECTED_RANGE,
            {"protectedRange": protected_range},
            sheet_id=protected.get("sheetId"),
            range_ref=grid_range_to_ref(protected),
        )

    def update_protected_range(
        self,
        origin: RequestOrigin,
        *,
        protected_range: dict[str, Any],
        fields: str,
    ) -> WrappedRequest:
        protected = protected_range.get("range") or {}
        return self._wrap(
            origin,
            RequestKind.UPDATE_PROTECTED_RANGE,
            {"protectedRange": protected_range, "fields": fields},
            sheet_id=protected.get("sheetId"),
            range_ref=grid_range_to_ref(protected),
        )

    def delete_protected_range(
        self, origin: RequestOrigin, *, protected_range_id: int
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.DELETE_PROTECTED_RANGE,
            {"protectedRangeId": protected_range_id},
            range_ref=f"protectedRange/{protected_range_id}",
        )

    # ------------------------------------------------------------------
    # Developer metadata
    # ------------------------------------------------------------------

    def create_developer_metadata(
        self, origin: RequestOrigin, *, developer_metadata: dict[str, Any]
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.CREATE_DEVELOPER_METADATA,
            {"developerMetadata": developer_metadata},
        )

    def update_developer_metadata(
        self,
        origin: RequestOrigin,
        *,
        data_filters: list[dict[str, Any]],
        developer_metadata: dict[str, Any],
        fields: str,
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.UPDATE_DEVELOPER_METADATA,
            {
                "dataFilters": data_filters,
                "developerMetadata": developer_metadata,
                "fields": fields,
            },
        )

    def delete_developer_metadata(
        self, origin: RequestOrigin, *, data_filter: dict[str, Any]
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.DELETE_DEVELOPER_METADATA,
            {"dataFilter": data_filter},
            range_ref=_data_filter_ref(data_filter),
        )

    # ------------------------------------------------------------------
    # Banding
    # ------------------------------------------------------------------

    def add_banding(
        self, origin: RequestOrigin, *, banded_range: dict[str, Any]
    ) -> WrappedRequest:
        banded = banded_range.get("range") or {}
        return self._wrap(
            origin,
            RequestKind.ADD_BANDING,
            {"bandedRange": banded_range},
            estimated_cells=self.estimator.grid(banded) if banded else None,
            sheet_id=banded.get("sheetId"),
            range_ref=grid_range_to_ref(banded),
        )

    def update_banding(
        self,
        origin: RequestOrigin,
        *,
        banded_range: dict[str, Any],
        fields: str,
    ) -> WrappedRequest:
        banded = banded_range.get("range") or {}
        return self._wrap(
            origin,
            RequestKind.UPDATE_BANDING,
            {"bandedRange": banded_range, "fields": fields},
            sheet_id=banded.get("sheetId"),
            range_ref=grid_range_to_ref(banded),
        )

    def delete_banding(
        self, origin: RequestOrigin, *, banded_range_id: int
    ) -> WrappedRequest:
        return self._wrap(
            origin,
            RequestKind.DELETE_BANDING,
            {"bandedRangeId": banded_range_id},
            range_ref=f"banding/{banded_range_id}",
        )
