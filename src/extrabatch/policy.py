"""Safety policy checks run before any network call.

Rules:
- A batch may hold at most ``max_intents_per_batch`` requests
- At most one destructive request per batch unless explicitly allowed
- No single request may touch more than ``max_cells_per_operation`` cells,
  except row/column deletions
- Destructive requests must name an explicit target range
- Row/column deletions are bounded by ``max_rows_per_delete`` and
  ``max_columns_per_delete``

Every failure raises PolicyViolation and is never retryable.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loguru import logger

from extrabatch.api_types import RequestKind
from extrabatch.errors import ErrorCode, policy_violation

if TYPE_CHECKING:
    from collections.abc import Sequence

    from extrabatch.request_builder import WrappedRequest


@dataclass(frozen=True)
class PolicyConfig:
    """Safety limits applied to every batch."""

    max_cells_per_operation: int = 50_000
    max_rows_per_delete: int = 10_000
    max_columns_per_delete: int = 100
    require_explicit_range_for_delete: bool = True
    allow_batch_destructive: bool = False
    max_intents_per_batch: int = 100


class PolicyEnforcer:
    """Validates pending requests against a PolicyConfig."""

    def __init__(self, config: PolicyConfig | None = None) -> None:
        self._config = config or PolicyConfig()

    @property
    def config(self) -> PolicyConfig:
        return self._config

    def update_config(self, **changes: Any) -> PolicyConfig:
        """Replace the active config with a copy carrying ``changes``."""
        self._config = dataclasses.replace(self._config, **changes)
        logger.info("Policy updated", extra={"changes": changes})
        return self._config

    def validate_intents(self, requests: Sequence[WrappedRequest]) -> None:
        """Check a batch of requests against the policy.

        Raises:
            PolicyViolation: On the first rule the batch breaks.
        """
        config = self._config

        if len(requests) > config.max_intents_per_batch:
            raise policy_violation(
                ErrorCode.EFFECT_SCOPE_EXCEEDED,
                f"Batch has {len(requests)} operations, limit is "
                f"{config.max_intents_per_batch}",
                "Split the operations into smaller batches",
                count=len(requests),
                limit=config.max_intents_per_batch,
            )

        destructive = [r for r in requests if r.metadata.destructive]
        if len(destructive) > 1 and not config.allow_batch_destructive:
            raise policy_violation(
                ErrorCode.EFFECT_SCOPE_EXCEEDED,
                f"Batch has {len(destructive)} destructive operations; only one "
                "is allowed per batch",
                "Run destructive operations one at a time",
                destructive_count=len(destructive),
            )

        for wrapped in requests:
            # Row/column deletions are bounded by their own span limits below.
            estimated = wrapped.metadata.estimated_cells
            if (
                estimated is not None
                and estimated > config.max_cells_per_operation
                and wrapped.kind is not RequestKind.DELETE_DIMENSION
            ):
                raise policy_violation(
                    ErrorCode.EFFECT_SCOPE_EXCEEDED,
                    f"{wrapped.kind.value} would affect ~{estimated} cells, limit "
                    f"is {config.max_cells_per_operation}",
                    "Narrow the range or raise max_cells_per_operation",
                    request_kind=wrapped.kind.value,
                    estimated_cells=estimated,
                    limit=config.max_cells_per_operation,
                )

            if (
                wrapped.metadata.destructive
                and config.require_explicit_range_for_delete
                and not wrapped.metadata.range_ref
            ):
                raise policy_violation(
                    ErrorCode.EXPLICIT_RANGE_REQUIRED,
                    f"Destructive operation {wrapped.kind.value} needs an explicit "
                    "target range",
                    "Specify the exact range or object to operate on",
                    request_kind=wrapped.kind.value,
                )

            if wrapped.kind is RequestKind.DELETE_DIMENSION:
                dimension_range = wrapped.request[wrapped.kind.value].get("range", {})
                self.validate_dimension_delete(
                    dimension_range.get("dimension", "ROWS"),
                    dimension_range.get("startIndex"),
                    dimension_range.get("endIndex"),
                )

    def validate_dimension_delete(
        self,
        dimension: str,
        start_index: int | None,
        end_index: int | None,
    ) -> None:
        """Bound the number of rows or columns a single deletion removes.

        Raises:
            PolicyViolation: If the span is unbounded or exceeds the limit.
        """
        noun = "columns" if dimension == "COLUMNS" else "rows"
        if start_index is None or end_index is None:
            raise policy_violation(
                ErrorCode.EXPLICIT_RANGE_REQUIRED,
                f"Deleting {noun} requires both a start and an end index",
                "Specify startIndex and endIndex",
                dimension=dimension,
            )

        count = end_index - start_index
        if dimension == "COLUMNS":
            limit = self._config.max_columns_per_delete
        else:
            limit = self._config.max_rows_per_delete
        if count > limit:
            raise policy_violation(
                ErrorCode.EFFECT_SCOPE_EXCEEDED,
                f"Deleting {count} {noun} exceeds the limit of {limit}",
                f"Delete at most {limit} {noun} at a time",
                dimension=dimension,
                count=count,
                limit=limit,
            )
