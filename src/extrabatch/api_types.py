"""Tagged unions for Sheets batchUpdate requests and replies.

The Sheets API encodes the operation kind of a Request or Response object by
which single optional field is populated. These helpers decode that once at
the boundary into an explicit discriminant, so the rest of the package can
dispatch on an enum instead of probing dict keys.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class RequestKind(Enum):
    """Every batchUpdate request kind emitted by RequestBuilder."""

    UPDATE_CELLS = "updateCells"
    REPEAT_CELL = "repeatCell"
    ADD_SHEET = "addSheet"
    DELETE_SHEET = "deleteSheet"
    UPDATE_SHEET_PROPERTIES = "updateSheetProperties"
    DUPLICATE_SHEET = "duplicateSheet"
    INSERT_DIMENSION = "insertDimension"
    DELETE_DIMENSION = "deleteDimension"
    MOVE_DIMENSION = "moveDimension"
    UPDATE_DIMENSION_PROPERTIES = "updateDimensionProperties"
    APPEND_DIMENSION = "appendDimension"
    AUTO_RESIZE_DIMENSIONS = "autoResizeDimensions"
    UPDATE_BORDERS = "updateBorders"
    MERGE_CELLS = "mergeCells"
    UNMERGE_CELLS = "unmergeCells"
    COPY_PASTE = "copyPaste"
    CUT_PASTE = "cutPaste"
    FIND_REPLACE = "findReplace"
    SET_DATA_VALIDATION = "setDataValidation"
    ADD_CONDITIONAL_FORMAT_RULE = "addConditionalFormatRule"
    UPDATE_CONDITIONAL_FORMAT_RULE = "updateConditionalFormatRule"
    DELETE_CONDITIONAL_FORMAT_RULE = "deleteConditionalFormatRule"
    SORT_RANGE = "sortRange"
    SET_BASIC_FILTER = "setBasicFilter"
    CLEAR_BASIC_FILTER = "clearBasicFilter"
    ADD_FILTER_VIEW = "addFilterView"
    UPDATE_FILTER_VIEW = "updateFilterView"
    DELETE_FILTER_VIEW = "deleteFilterView"
    ADD_CHART = "addChart"
    UPDATE_CHART_SPEC = "updateChartSpec"
    DELETE_EMBEDDED_OBJECT = "deleteEmbeddedObject"
    ADD_SLICER = "addSlicer"
    UPDATE_SLICER_SPEC = "updateSlicerSpec"
    ADD_NAMED_RANGE = "addNamedRange"
    UPDATE_NAMED_RANGE = "updateNamedRange"
    DELETE_NAMED_RANGE = "deleteNamedRange"
    ADD_PROTECTED_RANGE = "addProtectedRange"
    UPDATE_PROTECTED_RANGE = "updateProtectedRange"
    DELETE_PROTECTED_RANGE = "deleteProtectedRange"
    CREATE_DEVELOPER_METADATA = "createDeveloperMetadata"
    UPDATE_DEVELOPER_METADATA = "updateDeveloperMetadata"
    DELETE_DEVELOPER_METADATA = "deleteDeveloperMetadata"
    ADD_BANDING = "addBanding"
    UPDATE_BANDING = "updateBanding"
    DELETE_BANDING = "deleteBanding"
    ADD_DIMENSION_GROUP = "addDimensionGroup"
    DELETE_DIMENSION_GROUP = "deleteDimensionGroup"
    UPDATE_DIMENSION_GROUP = "updateDimensionGroup"
    TRIM_WHITESPACE = "trimWhitespace"
    RANDOMIZE_RANGE = "randomizeRange"
    TEXT_TO_COLUMNS = "textToColumns"
    AUTO_FILL = "autoFill"


class ReplyKind(Enum):
    """Reply shapes that carry an operation-specific payload."""

    ADD_SHEET = "addSheet"
    DUPLICATE_SHEET = "duplicateSheet"
    FIND_REPLACE = "findReplace"
    UPDATE_CONDITIONAL_FORMAT_RULE = "updateConditionalFormatRule"
    DELETE_CONDITIONAL_FORMAT_RULE = "deleteConditionalFormatRule"
    ADD_FILTER_VIEW = "addFilterView"
    DUPLICATE_FILTER_VIEW = "duplicateFilterView"
    ADD_CHART = "addChart"
    ADD_SLICER = "addSlicer"
    ADD_NAMED_RANGE = "addNamedRange"
    ADD_PROTECTED_RANGE = "addProtectedRange"
    CREATE_DEVELOPER_METADATA = "createDeveloperMetadata"
    UPDATE_DEVELOPER_METADATA = "updateDeveloperMetadata"
    DELETE_DEVELOPER_METADATA = "deleteDeveloperMetadata"
    ADD_BANDING = "addBanding"
    ADD_DIMENSION_GROUP = "addDimensionGroup"
    DELETE_DIMENSION_GROUP = "deleteDimensionGroup"
    TRIM_WHITESPACE = "trimWhitespace"
    DELETE_DUPLICATES = "deleteDuplicates"


_REPLY_KINDS = {kind.value: kind for kind in ReplyKind}


def request_kind(request: dict[str, Any]) -> RequestKind:
    """Decode the discriminant of a batchUpdate request.

    Raises:
        ValueError: If the request does not have exactly one populated
            field, or the field is not a known request kind.
    """
    keys = [key for key, value in request.items() if value is not None]
    if len(keys) != 1:
        raise ValueError(
            f"Request must have exactly one operation field, got {sorted(keys)}"
        )
    return RequestKind(keys[0])


def decode_reply(reply: dict[str, Any]) -> tuple[ReplyKind | str | None, Any]:
    """Decode the discriminant and payload of a batchUpdate reply.

    Returns:
        ``(ReplyKind, payload)`` for known reply shapes, ``(key, payload)``
        for an unrecognised populated key, and ``(None, {})`` for an empty
        reply (most mutating operations reply with ``{}``).
    """
    for key, value in reply.items():
        if value is None:
            continue
        kind = _REPLY_KINDS.get(key)
        return (kind if kind is not None else key), value
    return None, {}
