"""Extract outcome metadata from a batchUpdate response.

Each reply in ``BatchUpdateSpreadsheetResponse.replies`` is decoded once into
its ReplyKind and dispatched to a per-kind handler that pulls out counts of
affected cells/rows/columns and the ids of created objects. Most mutating
requests reply with ``{}``; those become a generic success record.

Example response:
    {
        "spreadsheetId": "abc",
        "replies": [
            {"addSheet": {"properties": {...}}},
            {"findReplace": {"occurrencesChanged": 42}},
            {}
        ]
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from extrabatch.api_types import ReplyKind, decode_reply

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from extrabatch.api_types import RequestKind


@dataclass
class ParsedReplyMetadata:
    """Outcome of a single reply."""

    request_type: str
    success: bool
    cells_affected: int | None = None
    rows_affected: int | None = None
    columns_affected: int | None = None
    object_ids: dict[str, Any] = field(default_factory=dict)
    summary: str = ""


@dataclass
class ParsedResponseMetadata:
    """Aggregated outcome of a whole batchUpdate response."""

    spreadsheet_id: str
    total_cells_affected: int
    total_rows_affected: int
    total_columns_affected: int
    replies: list[ParsedReplyMetadata]
    summary: str


def _sheet_reply(
    request_type: str, verb: str, payload: dict[str, Any]
) -> ParsedReplyMetadata:
    properties = payload.get("properties") or {}
    grid = properties.get("gridProperties") or {}
    sheet_id = properties.get("sheetId")
    title = properties.get("title", "Untitled")
    rows = grid.get("rowCount", 0)
    columns = grid.get("columnCount", 0)
    return ParsedReplyMetadata(
        request_type=request_type,
        success=True,
        cells_affected=rows * columns,
        rows_affected=rows,
        columns_affected=columns,
        object_ids={"sheet_id": sheet_id},
        summary=(
            f'{verb} "{title}" ({rows}x{columns} cells, '
            f"ID: {_or_unknown(sheet_id)})"
        ),
    )


def _or_unknown(value: Any) -> Any:
    return "unknown" if value is None else value


def _parse_add_sheet(payload: dict[str, Any]) -> ParsedReplyMetadata:
    return _sheet_reply("addSheet", "Created sheet", payload)


def _parse_duplicate_sheet(payload: dict[str, Any]) -> ParsedReplyMetadata:
    return _sheet_reply("duplicateSheet", "Duplicated sheet as", payload)


def _parse_find_replace(payload: dict[str, Any]) -> ParsedReplyMetadata:
    occurrences = payload.get("occurrencesChanged", 0)
    rows = payload.get("rowsChanged", 0)
    sheets = payload.get("sheetsChanged", 0)
    values = payload.get("valuesChanged", 0)
    formulas = payload.get("formulasChanged", 0)
    return ParsedReplyMetadata(
        request_type="findReplace",
        success=True,
        cells_affected=occurrences,
        rows_affected=rows,
        summary=(
            f"Find/Replace: {occurrences} occurrence(s) in {rows} row(s) across "
            f"{sheets} sheet(s) ({values} values, {formulas} formulas)"
        ),
    )


def _parse_trim_whitespace(payload: dict[str, Any]) -> ParsedReplyMetadata:
    cells = payload.get("cellsChangedCount", 0)
    return ParsedReplyMetadata(
        request_type="trimWhitespace",
        success=True,
        cells_affected=cells,
        summary=f"Trimmed whitespace from {cells} cell(s)",
    )


def _parse_delete_duplicates(payload: dict[str, Any]) -> ParsedReplyMetadata:
    removed = payload.get("duplicatesRemovedCount", 0)
    return ParsedReplyMetadata(
        request_type="deleteDuplicates",
        success=True,
        rows_affected=removed,
        summary=f"Removed {removed} duplicate row(s)",
    )


def _parse_update_conditional_format_rule(
    payload: dict[str, Any],
) -> ParsedReplyMetadata:
    index = payload.get("newIndex", payload.get("oldIndex", 0))
    new_rule = payload.get("newRule")
    old_rule = payload.get("oldRule")
    if new_rule and not old_rule:
        summary = f"Added conditional format rule at index {index}"
    elif old_rule and not new_rule:
        summary = f"Removed conditional format rule at index {index}"
    else:
        summary = f"Updated conditional format rule at index {index}"
    return ParsedReplyMetadata(
        request_type="updateConditionalFormatRule", success=True, summary=summary
    )


def _parse_delete_conditional_format_rule(
    payload: dict[str, Any],
) -> ParsedReplyMetadata:
    return ParsedReplyMetadata(
        request_type="deleteConditionalFormatRule",
        success=True,
        summary="Deleted conditional format rule",
    )


def _filter_view_reply(
    request_type: str, verb: str, payload: dict[str, Any]
) -> ParsedReplyMetadata:
    view = payload.get("filter") or {}
    filter_view_id = view.get("filterViewId")
    title = view.get("title", "Untitled")
    return ParsedReplyMetadata(
        request_type=request_type,
        success=True,
        object_ids={"filter_view_id": filter_view_id},
        summary=f'{verb} "{title}" (ID: {_or_unknown(filter_view_id)})',
    )


def _parse_add_filter_view(payload: dict[str, Any]) -> ParsedReplyMetadata:
    return _filter_view_reply("addFilterView", "Created filter view", payload)


def _parse_duplicate_filter_view(payload: dict[str, Any]) -> ParsedReplyMetadata:
    return _filter_view_reply(
        "duplicateFilterView", "Duplicated filter view as", payload
    )


def _parse_add_chart(payload: dict[str, Any]) -> ParsedReplyMetadata:
    chart = payload.get("chart") or {}
    chart_id = chart.get("chartId")
    chart_type = (
        ((chart.get("spec") or {}).get("basicChart") or {}).get("chartType")
        or "unknown"
    )
    return ParsedReplyMetadata(
        request_type="addChart",
        success=True,
        object_ids={"chart_id": chart_id},
        summary=f"Created {chart_type} chart (ID: {_or_unknown(chart_id)})",
    )


def _parse_add_slicer(payload: dict[str, Any]) -> ParsedReplyMetadata:
    slicer_id = (payload.get("slicer") or {}).get("slicerId")
    return ParsedReplyMetadata(
        request_type="addSlicer",
        success=True,
        object_ids={"slicer_id": slicer_id},
        summary=f"Created slicer (ID: {_or_unknown(slicer_id)})",
    )


def _parse_add_named_range(payload: dict[str, Any]) -> ParsedReplyMetadata:
    named_range = payload.get("namedRange") or {}
    named_range_id = named_range.get("namedRangeId")
    name = named_range.get("name", "unnamed")
    return ParsedReplyMetadata(
        request_type="addNamedRange",
        success=True,
        object_ids={"named_range_id": named_range_id},
        summary=f'Created named range "{name}" (ID: {_or_unknown(named_range_id)})',
    )


def _parse_add_protected_range(payload: dict[str, Any]) -> ParsedReplyMetadata:
    protected = payload.get("protectedRange") or {}
    protected_range_id = protected.get("protectedRangeId")
    description = protected.get("description", "No description")
    return ParsedReplyMetadata(
        request_type="addProtectedRange",
        success=True,
        object_ids={"protected_range_id": protected_range_id},
        summary=(
            f'Created protected range: "{description}" '
            f"(ID: {_or_unknown(protected_range_id)})"
        ),
    )


def _parse_create_developer_metadata(
    payload: dict[str, Any],
) -> ParsedReplyMetadata:
    metadata = payload.get("developerMetadata") or {}
    metadata_id = metadata.get("metadataId")
    key = metadata.get("metadataKey", "unknown")
    return ParsedReplyMetadata(
        request_type="createDeveloperMetadata",
        success=True,
        object_ids={"metadata_id": metadata_id},
        summary=f'Created developer metadata "{key}" (ID: {_or_unknown(metadata_id)})',
    )


def _parse_update_developer_metadata(
    payload: dict[str, Any],
) -> ParsedReplyMetadata:
    keys = ", ".join(
        m.get("metadataKey", "unknown") for m in payload.get("developerMetadata") or []
    )
    return ParsedReplyMetadata(
        request_type="updateDeveloperMetadata",
        success=True,
        summary=f"Updated developer metadata: {keys}",
    )


def _parse_delete_developer_metadata(
    payload: dict[str, Any],
) -> ParsedReplyMetadata:
    deleted = len(payload.get("deletedDeveloperMetadata") or [])
    noun = "entry" if deleted == 1 else "entries"
    return ParsedReplyMetadata(
        request_type="deleteDeveloperMetadata",
        success=True,
        summary=f"Deleted {deleted} developer metadata {noun}",
    )


def _parse_add_banding(payload: dict[str, Any]) -> ParsedReplyMetadata:
    banded_range_id = (payload.get("bandedRange") or {}).get("bandedRangeId")
    return ParsedReplyMetadata(
        request_type="addBanding",
        success=True,
        object_ids={"banded_range_id": banded_range_id},
        summary=f"Created banded range (ID: {_or_unknown(banded_range_id)})",
    )


def _parse_add_dimension_group(payload: dict[str, Any]) -> ParsedReplyMetadata:
    depth = len(payload.get("dimensionGroups") or [])
    return ParsedReplyMetadata(
        request_type="addDimensionGroup",
        success=True,
        object_ids={"dimension_group_depth": depth},
        summary=f"Created dimension group (depth: {depth})",
    )


def _parse_delete_dimension_group(payload: dict[str, Any]) -> ParsedReplyMetadata:
    depth = len(payload.get("dimensionGroups") or [])
    return ParsedReplyMetadata(
        request_type="deleteDimensionGroup",
        success=True,
        object_ids={"dimension_group_depth": depth},
        summary=f"Deleted dimension group (remaining depth: {depth})",
    )


_REPLY_PARSERS: dict[ReplyKind, Callable[[dict[str, Any]], ParsedReplyMetadata]] = {
    ReplyKind.ADD_SHEET: _parse_add_sheet,
    ReplyKind.DUPLICATE_SHEET: _parse_duplicate_sheet,
    ReplyKind.FIND_REPLACE: _parse_find_replace,
    ReplyKind.UPDATE_CONDITIONAL_FORMAT_RULE: _parse_update_conditional_format_rule,
    ReplyKind.DELETE_CONDITIONAL_FORMAT_RULE: _parse_delete_conditional_format_rule,
    ReplyKind.ADD_FILTER_VIEW: _parse_add_filter_view,
    ReplyKind.DUPLICATE_FILTER_VIEW: _parse_duplicate_filter_view,
    ReplyKind.ADD_CHART: _parse_add_chart,
    ReplyKind.ADD_SLICER: _parse_add_slicer,
    ReplyKind.ADD_NAMED_RANGE: _parse_add_named_range,
    ReplyKind.ADD_PROTECTED_RANGE: _parse_add_protected_range,
    ReplyKind.CREATE_DEVELOPER_METADATA: _parse_create_developer_metadata,
    ReplyKind.UPDATE_DEVELOPER_METADATA: _parse_update_developer_metadata,
    ReplyKind.DELETE_DEVELOPER_METADATA: _parse_delete_developer_metadata,
    ReplyKind.ADD_BANDING: _parse_add_banding,
    ReplyKind.ADD_DIMENSION_GROUP: _parse_add_dimension_group,
    ReplyKind.DELETE_DIMENSION_GROUP: _parse_delete_dimension_group,
    ReplyKind.TRIM_WHITESPACE: _parse_trim_whitespace,
    ReplyKind.DELETE_DUPLICATES: _parse_delete_duplicates,
}


class ResponseParser:
    """Parses BatchUpdateSpreadsheetResponse objects."""

    def parse_batch_update_response(
        self,
        response: dict[str, Any],
        request_kinds: Sequence[RequestKind] = (),
    ) -> ParsedResponseMetadata:
        """Parse every reply and aggregate the totals.

        Args:
            response: BatchUpdateSpreadsheetResponse JSON
            request_kinds: Kinds of the requests that were sent, in order.
                Used to label empty replies.
        """
        replies = response.get("replies") or []
        parsed = [
            self.parse_reply(
                reply,
                index,
                request_kinds[index] if index < len(request_kinds) else None,
            )
            for index, reply in enumerate(replies)
        ]
        return ParsedResponseMetadata(
            spreadsheet_id=response.get("spreadsheetId", ""),
            total_cells_affected=sum(r.cells_affected or 0 for r in parsed),
            total_rows_affected=sum(r.rows_affected or 0 for r in parsed),
            total_columns_affected=sum(r.columns_affected or 0 for r in parsed),
            replies=parsed,
            summary=self.summarize(parsed),
        )

    def parse_reply(
        self,
        reply: dict[str, Any],
        index: int,
        request_kind: RequestKind | None = None,
    ) -> ParsedReplyMetadata:
        """Parse one reply. Handler failures become a failed record."""
        kind: ReplyKind | str | None = None
        request_type = request_kind.value if request_kind else None
        try:
            kind, payload = decode_reply(reply)
            if isinstance(kind, ReplyKind):
                return _REPLY_PARSERS[kind](payload)
            if kind is not None:
                request_type = kind
            request_type = request_type or f"unknownRequest{index}"
            return ParsedReplyMetadata(
                request_type=request_type,
                success=True,
                summary=f"Executed {request_type} successfully",
            )
        except Exception as e:
            if isinstance(kind, ReplyKind):
                label = kind.value
            else:
                label = kind or request_type
            logger.warning(
                "Failed to parse reply",
                extra={"index": index, "request_type": label, "error": str(e)},
            )
            return ParsedReplyMetadata(
                request_type=label or f"failedRequest{index}",
                success=False,
                summary=f"Error parsing {label or 'operation'} reply: {e}",
            )

    @staticmethod
    def summarize(replies: list[ParsedReplyMetadata]) -> str:
        """One human-readable line describing all replies."""
        if not replies:
            return "No operations performed"
        if len(replies) == 1:
            return replies[0].summary or "Operation completed successfully"

        succeeded = sum(1 for r in replies if r.success)
        failed = len(replies) - succeeded
        parts = [f"{succeeded} operation(s) completed"]
        if failed:
            parts.append(f"{failed} failed")
        total_cells = sum(r.cells_affected or 0 for r in replies)
        if total_cells:
            parts.append(f"{total_cells} cell(s) affected")
        return ", ".join(parts)
