"""Safety-railed batching and execution of Google Sheets batchUpdate requests."""

from extrabatch.batch_compiler import (
    BatchCompiler,
    CompiledBatch,
    DiffOptions,
    EffectScope,
    ExecutionResult,
    ExpectedState,
    ProgressEvent,
    SafetyOptions,
)
from extrabatch.diff_engine import DiffEngine, DiffTier
from extrabatch.errors import ErrorCode, ErrorDetail, PolicyViolation
from extrabatch.policy import PolicyConfig, PolicyEnforcer
from extrabatch.rate_limiter import RateLimiter
from extrabatch.request_builder import RequestBuilder, RequestOrigin, WrappedRequest
from extrabatch.response_parser import ResponseParser
from extrabatch.snapshot import DriveSnapshotService, SnapshotService
from extrabatch.transport import (
    GoogleSheetsTransport,
    LocalFileTransport,
    Transport,
    TransportError,
)

__version__ = "0.1.0"

__all__ = [
    "BatchCompiler",
    "CompiledBatch",
    "DiffEngine",
    "DiffOptions",
    "DiffTier",
    "DriveSnapshotService",
    "EffectScope",
    "ErrorCode",
    "ErrorDetail",
    "ExecutionResult",
    "ExpectedState",
    "GoogleSheetsTransport",
    "LocalFileTransport",
    "PolicyConfig",
    "PolicyEnforcer",
    "PolicyViolation",
    "ProgressEvent",
    "RateLimiter",
    "RequestBuilder",
    "RequestOrigin",
    "ResponseParser",
    "SafetyOptions",
    "SnapshotService",
    "Transport",
    "TransportError",
    "WrappedRequest",
]
