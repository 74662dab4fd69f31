"""Error taxonomy for the replication engine.

Every failure that crosses a component boundary is a ``MirrorError`` with a
stable ``code``. ``recoverable`` marks the transient-by-default errors: the
uplink stops for this cycle, its cursor stays put, and the same release is
attempted again on the next cycle. Non-recoverable errors are terminal for
the one release and need an operator to look at the upstream.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    DELTA_FETCH_FAILED = "DELTA_FETCH_FAILED"
    ARTIFACT_NOT_FOUND = "ARTIFACT_NOT_FOUND"
    ARTIFACT_FETCH_FAILED = "ARTIFACT_FETCH_FAILED"
    ARCHIVE_LAYOUT_MISMATCH = "ARCHIVE_LAYOUT_MISMATCH"
    METADATA_INCOMPLETE = "METADATA_INCOMPLETE"
    DUPLICATE_RELEASE = "DUPLICATE_RELEASE"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    CONTENT_HASH_MISMATCH = "CONTENT_HASH_MISMATCH"
    INVALID_REFERENCE = "INVALID_REFERENCE"
    # Raw HTTP outcomes; components translate these into their own codes.
    UPSTREAM_NOT_FOUND = "UPSTREAM_NOT_FOUND"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"


class MirrorError(Exception):
    """Base class for every error raised by the engine."""

    code: ErrorCode = ErrorCode.TRANSACTION_FAILED
    recoverable: bool = True

    def __init__(self, message: str, *, recoverable: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        if recoverable is not None:
            self.recoverable = recoverable

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


class DeltaFetchFailed(MirrorError):
    code = ErrorCode.DELTA_FETCH_FAILED


class ArtifactNotFound(MirrorError):
    code = ErrorCode.ARTIFACT_NOT_FOUND
    recoverable = False


class ArtifactFetchFailed(MirrorError):
    code = ErrorCode.ARTIFACT_FETCH_FAILED


class ArchiveLayoutMismatch(MirrorError):
    code = ErrorCode.ARCHIVE_LAYOUT_MISMATCH
    recoverable = False


class MetadataIncomplete(MirrorError):
    code = ErrorCode.METADATA_INCOMPLETE


class DuplicateRelease(MirrorError):
    code = ErrorCode.DUPLICATE_RELEASE
    recoverable = False


class TransactionFailed(MirrorError):
    code = ErrorCode.TRANSACTION_FAILED


class ContentHashMismatch(MirrorError):
    code = ErrorCode.CONTENT_HASH_MISMATCH
    recoverable = False


class InvalidReference(MirrorError, ValueError):
    code = ErrorCode.INVALID_REFERENCE
    recoverable = False


class UpstreamNotFound(MirrorError):
    code = ErrorCode.UPSTREAM_NOT_FOUND
    recoverable = False


class UpstreamUnavailable(MirrorError):
    code = ErrorCode.UPSTREAM_UNAVAILABLE
