"""Compile WrappedRequests into batchUpdate calls and execute them safely.

compile() groups requests by spreadsheet, merges trivially compatible
neighbours and chunks each group under the per-call request and cell caps.
execute() runs one CompiledBatch through the safety rails:

    validating      policy and effect-scope checks (no network)
                    dry run short-circuit
                    write tokens, expected-state precondition
    compiling       payload size guard, before-state capture, snapshot
    executing       exactly one batchUpdate call
    capturing_diff  reply parsing and diff

execute_all() runs batches for different spreadsheets concurrently and
batches for the same spreadsheet strictly in submission order.
"""

from __future__ import annotations

import asyncio
import itertools
import operator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger

from extrabatch.api_types import RequestKind
from extrabatch.diff_engine import DiffTier
from extrabatch.errors import (
    RATE_LIMIT_THROTTLE_MS,
    ErrorCode,
    ErrorDetail,
    PolicyViolation,
    map_remote_error,
)
from extrabatch.payload import (
    MAX_PAYLOAD_BYTES,
    WARNING_PAYLOAD_BYTES,
    PayloadMetrics,
    monitor_payload,
    payload_size,
)
from extrabatch.response_parser import ResponseParser
from extrabatch.transport import TransportError
from extrabatch.utils import checksum, escape_sheet_title

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from extrabatch.diff_engine import DiffEngine, DiffResult, SpreadsheetState
    from extrabatch.policy import PolicyConfig, PolicyEnforcer
    from extrabatch.rate_limiter import RateLimiter
    from extrabatch.request_builder import WrappedRequest
    from extrabatch.response_parser import ParsedResponseMetadata
    from extrabatch.snapshot import SnapshotService
    from extrabatch.transport import Transport

# Hard limit of the Sheets API on requests per batchUpdate call.
MAX_BATCH_REQUESTS = 100
DEFAULT_MAX_CELLS_PER_BATCH = 50_000
DEFAULT_EFFECT_SCOPE_CELLS = 50_000
# Assumed footprint of a request that carries no estimate.
UNKNOWN_REQUEST_CELLS = 100

# Requests that leave the spreadsheet in the same state when applied twice.
IDEMPOTENT_KINDS = frozenset(
    {
        RequestKind.UPDATE_CELLS,
        RequestKind.REPEAT_CELL,
        RequestKind.UPDATE_BORDERS,
        RequestKind.MERGE_CELLS,
        RequestKind.UNMERGE_CELLS,
        RequestKind.SET_DATA_VALIDATION,
        RequestKind.SET_BASIC_FILTER,
        RequestKind.CLEAR_BASIC_FILTER,
        RequestKind.UPDATE_SHEET_PROPERTIES,
        RequestKind.UPDATE_DIMENSION_PROPERTIES,
        RequestKind.AUTO_RESIZE_DIMENSIONS,
        RequestKind.SORT_RANGE,
        RequestKind.TRIM_WHITESPACE,
    }
)

ProgressPhase = Literal["validating", "compiling", "executing", "capturing_diff"]


@dataclass(frozen=True)
class EffectScope:
    max_cells_affected: int | None = None
    require_explicit_range: bool = False


@dataclass(frozen=True)
class ExpectedState:
    """Preconditions checked against the live spreadsheet before writing."""

    row_count: int | None = None
    sheet_title: str | None = None
    checksum: str | None = None
    checksum_range: str = "A1:J10"
    first_row_values: list[Any] | None = None


@dataclass(frozen=True)
class DiffOptions:
    """How to report what changed.

    With no ``tier`` the diff is derived from the batchUpdate replies alone,
    unless ``auto`` is set, in which case DiffEngine.select_tier() picks the
    tier from the estimated cell count. With a tier, before-state is captured
    and compared against after-state, which comes from the updated
    spreadsheet in the response when ``from_response`` is set and from a
    second fetch otherwise.
    """

    tier: DiffTier | None = None
    auto: bool = False
    sample_size: int | None = None
    max_full_diff_cells: int | None = None
    from_response: bool = True


@dataclass(frozen=True)
class SafetyOptions:
    dry_run: bool = False
    auto_snapshot: bool = True
    effect_scope: EffectScope | None = None
    expected_state: ExpectedState | None = None
    diff: DiffOptions | None = None


@dataclass(frozen=True)
class ProgressEvent:
    phase: ProgressPhase
    current: int
    total: int
    message: str
    spreadsheet_id: str | None = None


@dataclass(frozen=True)
class CompiledBatch:
    """Requests for one spreadsheet that go out in a single batchUpdate call."""

    spreadsheet_id: str
    requests: list[dict[str, Any]]
    kinds: tuple[RequestKind, ...]
    estimated_cells: int
    destructive: bool
    high_risk: bool
    sources: tuple[WrappedRequest, ...] = ()
    validated: bool = False

    @property
    def request_count(self) -> int:
        return len(self.requests)


@dataclass
class ExecutionResult:
    success: bool
    spreadsheet_id: str
    responses: list[dict[str, Any]] = field(default_factory=list)
    diff: DiffResult | None = None
    response_metadata: ParsedResponseMetadata | None = None
    snapshot_id: str | None = None
    error: ErrorDetail | None = None
    dry_run: bool = False
    payload_metrics: PayloadMetrics | None = None


@dataclass
class _Entry:
    """A request on its way into a batch, with everything it was merged from."""

    request: dict[str, Any]
    kind: RequestKind
    estimated_cells: int
    sources: list[WrappedRequest]


def _estimated(wrapped: WrappedRequest) -> int:
    cells = wrapped.metadata.estimated_cells
    return UNKNOWN_REQUEST_CELLS if cells is None else cells


def _merge_update_cells(
    first: dict[str, Any], second: dict[str, Any]
) -> dict[str, Any] | None:
    """Concatenate two updateCells bodies writing contiguous rows, if possible."""
    if first.get("fields") != second.get("fields"):
        return None
    rows = (first.get("rows") or []) + (second.get("rows") or [])

    start, next_start = first.get("start"), second.get("start")
    if start is not None and next_start is not None:
        if (
            start.get("sheetId", 0) == next_start.get("sheetId", 0)
            and start.get("columnIndex", 0) == next_start.get("columnIndex", 0)
            and next_start.get("rowIndex", 0)
            == start.get("rowIndex", 0) + len(first.get("rows") or [])
        ):
            return {"rows": rows, "fields": first.get("fields"), "start": start}
        return None

    grid, next_grid = first.get("range"), second.get("range")
    if grid is None or next_grid is None:
        return None
    bounded = all(
        key in grid and key in next_grid for key in ("startRowIndex", "endRowIndex")
    )
    if not (
        bounded
        and grid.get("sheetId", 0) == next_grid.get("sheetId", 0)
        and grid.get("startColumnIndex") == next_grid.get("startColumnIndex")
        and grid.get("endColumnIndex") == next_grid.get("endColumnIndex")
        and grid["endRowIndex"] == next_grid["startRowIndex"]
        and len(first.get("rows") or []) == grid["endRowIndex"] - grid["startRowIndex"]
    ):
        return None
    merged_range = {**grid, "endRowIndex": next_grid["endRowIndex"]}
    return {"rows": rows, "fields": first.get("fields"), "range": merged_range}


def merge_compatible(
    requests: Sequence[WrappedRequest], max_sources: int | None = None
) -> list[_Entry]:
    """Merge adjacent requests whose combination is unambiguous.

    Identical idempotent requests collapse into one; adjacent updateCells
    writing contiguous rows of the same columns with the same field mask
    concatenate. Order is otherwise preserved. No entry absorbs more than
    ``max_sources`` requests.
    """
    entries: list[_Entry] = []
    for wrapped in requests:
        if entries and (
            max_sources is None or len(entries[-1].sources) < max_sources
        ):
            last = entries[-1]
            if (
                wrapped.kind is last.kind
                and wrapped.kind in IDEMPOTENT_KINDS
                and wrapped.request == last.request
            ):
                last.sources.append(wrapped)
                continue
            if wrapped.kind is last.kind is RequestKind.UPDATE_CELLS:
                key = RequestKind.UPDATE_CELLS.value
                merged = _merge_update_cells(
                    last.request[key], wrapped.request[key]
                )
                if merged is not None:
                    last.request = {key: merged}
                    last.estimated_cells += _estimated(wrapped)
                    last.sources.append(wrapped)
                    continue
        entries.append(
            _Entry(
                request=wrapped.request,
                kind=wrapped.kind,
                estimated_cells=_estimated(wrapped),
                sources=[wrapped],
            )
        )
    return entries


class BatchCompiler:
    """Turns WrappedRequests into batchUpdate calls guarded by safety rails."""

    def __init__(
        self,
        transport: Transport,
        rate_limiter: RateLimiter,
        diff_engine: DiffEngine,
        policy_enforcer: PolicyEnforcer,
        *,
        snapshot_service: SnapshotService | None = None,
        response_parser: ResponseParser | None = None,
        on_progress: Callable[[ProgressEvent], None] | None = None,
        max_requests_per_batch: int = MAX_BATCH_REQUESTS,
        max_cells_per_batch: int = DEFAULT_MAX_CELLS_PER_BATCH,
    ) -> None:
        if max_requests_per_batch > MAX_BATCH_REQUESTS:
            logger.warning(
                "Requested batch size exceeds the API limit, capping",
                extra={
                    "requested": max_requests_per_batch,
                    "limit": MAX_BATCH_REQUESTS,
                },
            )
        self._transport = transport
        self._rate_limiter = rate_limiter
        self._diff_engine = diff_engine
        self._diff_engine.use_rate_limiter(rate_limiter)
        self._policy_enforcer = policy_enforcer
        self._snapshot_service = snapshot_service
        self._response_parser = response_parser or ResponseParser()
        self._on_progress = on_progress
        self._max_requests = max(1, min(max_requests_per_batch, MAX_BATCH_REQUESTS))
        self._max_cells = max_cells_per_batch

    # ------------------------------------------------------------------
    # Compile
    # ------------------------------------------------------------------

    async def compile(
        self, requests: Sequence[WrappedRequest], *, validate: bool = False
    ) -> list[CompiledBatch]:
        """Group, merge and chunk requests into single-spreadsheet batches.

        Raises:
            PolicyViolation: When ``validate`` is set and a chunk breaks the
                policy.
        """
        grouped: dict[str, list[WrappedRequest]] = {}
        for wrapped in requests:
            grouped.setdefault(wrapped.spreadsheet_id, []).append(wrapped)

        # The intent-count rule counts requests before merging.
        max_sources = max(
            1,
            min(self._max_requests, self._policy_enforcer.config.max_intents_per_batch),
        )
        batches: list[CompiledBatch] = []
        for spreadsheet_id, group in grouped.items():
            entries = merge_compatible(group, max_sources)
            for chunk in self._chunk(entries, max_sources):
                sources = tuple(s for entry in chunk for s in entry.sources)
                if validate:
                    self._policy_enforcer.validate_intents(sources)
                batches.append(
                    CompiledBatch(
                        spreadsheet_id=spreadsheet_id,
                        requests=[entry.request for entry in chunk],
                        kinds=tuple(entry.kind for entry in chunk),
                        estimated_cells=sum(e.estimated_cells for e in chunk),
                        destructive=any(s.metadata.destructive for s in sources),
                        high_risk=any(s.metadata.high_risk for s in sources),
                        sources=sources,
                        validated=validate,
                    )
                )

        logger.debug(
            "Compiled requests",
            extra={
                "request_count": len(requests),
                "batch_count": len(batches),
                "spreadsheet_count": len(grouped),
            },
        )
        return batches

    def _chunk(self, entries: list[_Entry], max_sources: int) -> list[list[_Entry]]:
        chunks: list[list[_Entry]] = []
        current: list[_Entry] = []
        cells = sources = 0
        for entry in entries:
            if current and (
                sources + len(entry.sources) > max_sources
                or cells + entry.estimated_cells > self._max_cells
            ):
                chunks.append(current)
                current, cells, sources = [], 0, 0
            current.append(entry)
            cells += entry.estimated_cells
            sources += len(entry.sources)
        if current:
            chunks.append(current)
        return chunks

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    async def execute(
        self, batch: CompiledBatch, safety: SafetyOptions | None = None
    ) -> ExecutionResult:
        """Run one batch through the safety rails and a single batchUpdate."""
        safety = safety or SafetyOptions()
        spreadsheet_id = batch.spreadsheet_id
        result = ExecutionResult(
            success=False, spreadsheet_id=spreadsheet_id, dry_run=safety.dry_run
        )

        self._progress(
            "validating", 0, 4, "Validating safety constraints", spreadsheet_id
        )
        if not batch.validated:
            if batch.requests and not batch.sources:
                result.error = ErrorDetail(
                    code=ErrorCode.INVALID_REQUEST,
                    message="Batch has no source requests to validate",
                    suggested_fix="Build batches with BatchCompiler.compile()",
                    details={"requestCount": batch.request_count},
                )
                return result
            try:
                self._policy_enforcer.validate_intents(batch.sources)
            except PolicyViolation as e:
                result.error = e.detail
                return result

        scope_error = self._check_effect_scope(
            safety.effect_scope,
            batch.estimated_cells,
            has_explicit_range=bool(batch.sources)
            and all(s.metadata.range_ref for s in batch.sources),
        )
        if scope_error is not None:
            result.error = scope_error
            return result

        if safety.dry_run:
            result.success = True
            result.diff = self._diff_engine.estimate_diff(batch.estimated_cells)
            return result

        await self._rate_limiter.acquire("write", max(batch.request_count, 1))

        if safety.expected_state is not None:
            mismatch = await self._check_expected_state(
                spreadsheet_id, safety.expected_state
            )
            if mismatch is not None:
                result.error = mismatch
                return result

        self._progress("compiling", 1, 4, "Preparing batch request", spreadsheet_id)
        request_body = {"requests": batch.requests}
        size = payload_size(request_body)
        if size > MAX_PAYLOAD_BYTES:
            size_mb = round(size / 1_000_000, 2)
            result.error = ErrorDetail(
                code=ErrorCode.PAYLOAD_TOO_LARGE,
                message=f"Request payload ({size_mb}MB) exceeds the 9MB limit",
                suggested_fix="Split the operation into smaller batches",
                details={
                    "payloadSizeMB": size_mb,
                    "limitMB": MAX_PAYLOAD_BYTES // 1_000_000,
                    "requestCount": batch.request_count,
                },
            )
            return result
        if size > WARNING_PAYLOAD_BYTES:
            logger.warning(
                "Payload size approaching limit",
                extra={
                    "spreadsheet_id": spreadsheet_id,
                    "payload_mb": round(size / 1_000_000, 2),
                    "request_count": batch.request_count,
                },
            )

        diff_options = safety.diff or DiffOptions()
        tier = None
        if self._diff_engine.has_fetcher:
            tier = self._resolve_tier(diff_options, batch.estimated_cells)
        before_state = None
        if tier is not None:
            try:
                before_state = await self._diff_engine.capture_state(
                    spreadsheet_id,
                    tier=tier,
                    sample_size=diff_options.sample_size,
                    max_full_diff_cells=diff_options.max_full_diff_cells,
                )
            except TransportError as e:
                result.error = self._map_error(e)
                return result

        if batch.high_risk and safety.auto_snapshot:
            snapshot_error = await self._take_snapshot(spreadsheet_id, result)
            if snapshot_error is not None:
                result.error = snapshot_error
                return result

        self._progress("executing", 2, 4, "Executing batch update", spreadsheet_id)
        want_spreadsheet = tier is not None and diff_options.from_response
        try:
            response = await self._transport.batch_update(
                spreadsheet_id,
                batch.requests,
                include_spreadsheet_in_response=want_spreadsheet,
                response_include_grid_data=(
                    want_spreadsheet and tier is not DiffTier.METADATA
                ),
            )
        except TransportError as e:
            result.error = self._map_error(e)
            logger.error(
                "Batch update failed",
                extra={
                    "spreadsheet_id": spreadsheet_id,
                    "error_code": result.error.code.value,
                    "error": str(e),
                },
            )
            return result

        result.payload_metrics = monitor_payload(
            f"batchUpdate:{spreadsheet_id}", request_body, response
        )

        self._progress(
            "capturing_diff", 3, 4, "Parsing response metadata", spreadsheet_id
        )
        metadata = self._response_parser.parse_batch_update_response(
            response, batch.kinds
        )
        result.success = True
        result.responses = response.get("replies") or []
        result.response_metadata = metadata

        if before_state is not None:
            result.diff = await self._tiered_diff(
                before_state,
                response,
                tier,
                diff_options,
                batch.estimated_cells,
                metadata,
            )
        else:
            result.diff = self._diff_engine.diff_from_response(
                metadata, batch.estimated_cells
            )

        logger.info(
            "Batch execution completed",
            extra={
                "spreadsheet_id": spreadsheet_id,
                "request_count": batch.request_count,
                "total_cells_affected": metadata.total_cells_affected,
                "total_rows_affected": metadata.total_rows_affected,
                "summary": metadata.summary,
            },
        )
        self._progress(
            "capturing_diff", 4, 4, "Batch execution completed", spreadsheet_id
        )
        return result

    async def _tiered_diff(
        self,
        before: SpreadsheetState,
        response: dict[str, Any],
        tier: DiffTier | None,
        options: DiffOptions,
        estimated_cells: int,
        metadata: ParsedResponseMetadata,
    ) -> DiffResult:
        updated = response.get("updatedSpreadsheet")
        try:
            if options.from_response and updated:
                after = self._diff_engine.capture_state_from_response(
                    before.spreadsheet_id,
                    updated,
                    tier=tier,
                    sample_size=options.sample_size,
                )
            else:
                after = await self._diff_engine.capture_state(
                    before.spreadsheet_id,
                    tier=tier,
                    sample_size=options.sample_size,
                    max_full_diff_cells=options.max_full_diff_cells,
                )
            return await self._diff_engine.diff(
                before,
                after,
                tier=tier,
                sample_size=options.sample_size,
                max_full_diff_cells=options.max_full_diff_cells,
            )
        except TransportError as e:
            logger.warning(
                "After-state capture failed, falling back to response metadata",
                extra={"spreadsheet_id": before.spreadsheet_id, "error": str(e)},
            )
            return self._diff_engine.diff_from_response(metadata, estimated_cells)

    async def execute_all(
        self,
        batches: Sequence[CompiledBatch],
        safety: SafetyOptions | None = None,
    ) -> list[ExecutionResult]:
        """Execute batches, one result per batch in submission order.

        Different spreadsheets run concurrently. Batches for one spreadsheet
        run sequentially; once one fails, the rest are reported as skipped.
        """
        grouped: dict[str, list[tuple[int, CompiledBatch]]] = {}
        for index, batch in enumerate(batches):
            grouped.setdefault(batch.spreadsheet_id, []).append((index, batch))

        async def run_group(
            entries: list[tuple[int, CompiledBatch]],
        ) -> list[tuple[int, ExecutionResult]]:
            results: list[tuple[int, ExecutionResult]] = []
            failure: ExecutionResult | None = None
            for index, batch in entries:
                if failure is not None:
                    results.append((index, self._skipped(batch, failure, safety)))
                    continue
                result = await self.execute(batch, safety)
                results.append((index, result))
                if not result.success:
                    failure = result
            return results

        grouped_results = await asyncio.gather(
            *(run_group(entries) for entries in grouped.values())
        )
        ordered = sorted(
            itertools.chain.from_iterable(grouped_results), key=operator.itemgetter(0)
        )
        return [result for _, result in ordered]

    @staticmethod
    def _skipped(
        batch: CompiledBatch,
        failure: ExecutionResult,
        safety: SafetyOptions | None,
    ) -> ExecutionResult:
        cause = failure.error
        return ExecutionResult(
            success=False,
            spreadsheet_id=batch.spreadsheet_id,
            dry_run=bool(safety and safety.dry_run),
            error=ErrorDetail(
                code=ErrorCode.BATCH_SKIPPED,
                message=(
                    "Skipped because an earlier batch for this spreadsheet failed"
                ),
                retryable=bool(cause and cause.retryable),
                suggested_fix="Resolve the earlier failure and resubmit",
                details={"cause": cause.code.value} if cause else {},
            ),
        )

    async def execute_with_safety(
        self,
        spreadsheet_id: str,
        operation: Callable[[], Awaitable[Any]],
        *,
        safety: SafetyOptions | None = None,
        estimated_cells: int = 0,
        range_ref: str | None = None,
        high_risk: bool = False,
        skip_diff: bool = False,
    ) -> ExecutionResult:
        """Run an arbitrary mutation under the same rails as execute().

        The diff always compares captured before/after state, since there is
        no batchUpdate response to derive it from.
        """
        safety = safety or SafetyOptions()
        result = ExecutionResult(
            success=False, spreadsheet_id=spreadsheet_id, dry_run=safety.dry_run
        )
        total = 2 if skip_diff else 4

        self._progress(
            "validating", 0, total, "Validating safety constraints", spreadsheet_id
        )
        scope_error = self._check_effect_scope(
            safety.effect_scope, estimated_cells, has_explicit_range=bool(range_ref)
        )
        if scope_error is not None:
            result.error = scope_error
            return result

        if safety.dry_run:
            result.success = True
            result.diff = self._diff_engine.estimate_diff(estimated_cells)
            return result

        await self._rate_limiter.acquire("write")

        if safety.expected_state is not None:
            mismatch = await self._check_expected_state(
                spreadsheet_id, safety.expected_state
            )
            if mismatch is not None:
                result.error = mismatch
                return result

        diff_options = safety.diff or DiffOptions()
        tier = (
            self._resolve_tier(diff_options, estimated_cells)
            or self._diff_engine.default_tier
        )
        before_state = None
        if not skip_diff:
            self._progress(
                "compiling", 1, total, "Capturing current state", spreadsheet_id
            )
            try:
                before_state = await self._diff_engine.capture_state(
                    spreadsheet_id,
                    tier=tier,
                    sample_size=diff_options.sample_size,
                    max_full_diff_cells=diff_options.max_full_diff_cells,
                )
            except TransportError as e:
                result.error = self._map_error(e)
                return result

        if high_risk and safety.auto_snapshot:
            snapshot_error = await self._take_snapshot(spreadsheet_id, result)
            if snapshot_error is not None:
                result.error = snapshot_error
                return result

        step = 1 if skip_diff else 2
        self._progress("executing", step, total, "Executing operation", spreadsheet_id)
        try:
            await operation()
        except TransportError as e:
            result.error = self._map_error(e)
            return result

        result.success = True
        if before_state is None:
            return result

        self._progress("capturing_diff", 3, total, "Capturing changes", spreadsheet_id)
        try:
            after_state = await self._diff_engine.capture_state(
                spreadsheet_id,
                tier=tier,
                sample_size=diff_options.sample_size,
                max_full_diff_cells=diff_options.max_full_diff_cells,
            )
        except TransportError as e:
            logger.warning(
                "After-state capture failed",
                extra={"spreadsheet_id": spreadsheet_id, "error": str(e)},
            )
            return result
        result.diff = await self._diff_engine.diff(
            before_state,
            after_state,
            tier=tier,
            sample_size=diff_options.sample_size,
            max_full_diff_cells=diff_options.max_full_diff_cells,
        )
        self._progress("capturing_diff", 4, total, "Changes captured", spreadsheet_id)
        return result

    def update_policy(self, **changes: Any) -> PolicyConfig:
        """Change individual policy limits, keeping the rest."""
        return self._policy_enforcer.update_config(**changes)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_tier(
        self, options: DiffOptions, estimated_cells: int
    ) -> DiffTier | None:
        if options.tier is not None:
            return options.tier
        if options.auto:
            return self._diff_engine.select_tier(estimated_cells)
        return None

    @staticmethod
    def _check_effect_scope(
        scope: EffectScope | None,
        estimated_cells: int,
        *,
        has_explicit_range: bool,
    ) -> ErrorDetail | None:
        if scope is None:
            return None
        max_cells = (
            DEFAULT_EFFECT_SCOPE_CELLS
            if scope.max_cells_affected is None
            else scope.max_cells_affected
        )
        if estimated_cells > max_cells:
            return ErrorDetail(
                code=ErrorCode.EFFECT_SCOPE_EXCEEDED,
                message=(
                    f"Operation would affect ~{estimated_cells} cells, "
                    f"limit is {max_cells}"
                ),
                suggested_fix="Narrow the range or increase max_cells_affected",
                details={"estimatedCells": estimated_cells, "limit": max_cells},
            )
        if scope.require_explicit_range and not has_explicit_range:
            return ErrorDetail(
                code=ErrorCode.EXPLICIT_RANGE_REQUIRED,
                message="Explicit range required for this operation",
                suggested_fix="Provide an explicit A1 range",
            )
        return None

    async def _check_expected_state(
        self, spreadsheet_id: str, expected: ExpectedState
    ) -> ErrorDetail | None:
        """Compare the live spreadsheet against ``expected``.

        Returns a PRECONDITION_FAILED detail on mismatch, an INTERNAL_ERROR
        detail when the state could not be read, and None when it matches.
        """
        try:
            await self._rate_limiter.acquire("read")
            spreadsheet = await self._transport.get_spreadsheet(
                spreadsheet_id, fields="sheets.properties"
            )
        except TransportError as e:
            return self._read_failure("Failed to check expected state", e)

        sheets = [s.get("properties") or {} for s in spreadsheet.get("sheets") or []]

        if expected.row_count is not None:
            total_rows = sum(
                (p.get("gridProperties") or {}).get("rowCount", 0) for p in sheets
            )
            if total_rows != expected.row_count:
                return _precondition_failed(
                    f"Expected {expected.row_count} rows, found {total_rows}",
                    "Re-read the spreadsheet and try again",
                )

        if expected.sheet_title is not None and not any(
            p.get("title") == expected.sheet_title for p in sheets
        ):
            return _precondition_failed(
                f'Sheet "{expected.sheet_title}" not found',
                "Verify the sheet exists and try again",
            )

        if expected.checksum is not None:
            try:
                await self._rate_limiter.acquire("read")
                values = await self._transport.get_values(
                    spreadsheet_id,
                    expected.checksum_range,
                    value_render_option="UNFORMATTED_VALUE",
                )
            except TransportError as e:
                return self._read_failure("Failed to validate checksum", e)
            actual = checksum(values)
            if actual != expected.checksum:
                return _precondition_failed(
                    f"Checksum mismatch: expected {expected.checksum[:8]}..., "
                    f"got {actual[:8]}...",
                    "Data changed since last read. Re-read and retry.",
                )

        if expected.first_row_values is not None:
            prefix = (
                f"{escape_sheet_title(expected.sheet_title)}!"
                if expected.sheet_title
                else ""
            )
            try:
                await self._rate_limiter.acquire("read")
                rows = await self._transport.get_values(
                    spreadsheet_id,
                    f"{prefix}1:1",
                    value_render_option="FORMATTED_VALUE",
                )
            except TransportError as e:
                return self._read_failure("Failed to validate headers", e)
            actual_row = rows[0] if rows else []
            for index, wanted in enumerate(expected.first_row_values):
                found = actual_row[index] if index < len(actual_row) else None
                if found != wanted:
                    shown = "(empty)" if found is None else found
                    return _precondition_failed(
                        f"Header mismatch at column {index + 1}: "
                        f'expected "{wanted}", got "{shown}"',
                        "Column structure changed. Verify headers.",
                    )

        return None

    @staticmethod
    def _read_failure(message: str, error: TransportError) -> ErrorDetail:
        logger.warning(message, extra={"error": str(error)})
        return ErrorDetail(
            code=ErrorCode.INTERNAL_ERROR,
            message=message,
            retryable=True,
            details={"cause": str(error)},
        )

    async def _take_snapshot(
        self, spreadsheet_id: str, result: ExecutionResult
    ) -> ErrorDetail | None:
        if self._snapshot_service is None:
            logger.warning(
                "High-risk batch without a snapshot service",
                extra={"spreadsheet_id": spreadsheet_id},
            )
            return None
        await self._rate_limiter.acquire("read")
        try:
            result.snapshot_id = await self._snapshot_service.create(spreadsheet_id)
        except TransportError as e:
            logger.error(
                "Snapshot creation failed",
                extra={"spreadsheet_id": spreadsheet_id, "error": str(e)},
            )
            return ErrorDetail(
                code=ErrorCode.SNAPSHOT_CREATION_FAILED,
                message=f"Could not snapshot the spreadsheet: {e}",
                retryable=True,
                suggested_fix="Retry, or disable auto_snapshot to proceed without one",
            )
        return None

    def _map_error(self, error: TransportError) -> ErrorDetail:
        detail = map_remote_error(error)
        if detail.code is ErrorCode.RATE_LIMITED:
            self._rate_limiter.throttle(RATE_LIMIT_THROTTLE_MS)
        return detail

    def _progress(
        self,
        phase: ProgressPhase,
        current: int,
        total: int,
        message: str,
        spreadsheet_id: str,
    ) -> None:
        if self._on_progress is not None:
            self._on_progress(
                ProgressEvent(phase, current, total, message, spreadsheet_id)
            )


def _precondition_failed(message: str, suggested_fix: str) -> ErrorDetail:
    return ErrorDetail(
        code=ErrorCode.PRECONDITION_FAILED,
        message=message,
        retryable=True,
        suggested_fix=suggested_fix,
    )
