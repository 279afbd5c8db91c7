"""Error taxonomy for ingestion, persistence and upload.

Per-file errors (decode, parse, validation) are recovered by the caller:
the file is logged, counted and the loop continues. Phase-level errors
(persistence, correlation, transport) propagate to the top-level caller,
carrying whatever statistics were accumulated before the failure.
"""


class HealthlakeError(Exception):
    """Base class for all healthlake errors."""

    def __init__(self, message: str = "", stats=None):
        super().__init__(message)
        self.stats = stats


class DecodeError(HealthlakeError):
    """Archive is corrupt or the decoder is unavailable."""


class ParseError(HealthlakeError):
    """Malformed JSON, missing required field or unexpected file name."""


class ValidationRejection(HealthlakeError):
    """Well-formed input that is not accepted (allowlist, empty after filtering)."""

    def __init__(self, message: str = "", metric: str = ""):
        super().__init__(message)
        self.metric = metric


class PersistenceError(HealthlakeError):
    """Storage unreachable or a constraint violation other than conflict-ignore."""


class CorrelationError(HealthlakeError):
    """Failure to query or insert during heart-rate back-fill."""


class TransportError(HealthlakeError):
    """Network failure talking to the ingest server or the live source. Retryable."""


class PipelineOrderError(HealthlakeError):
    """A pipeline phase was started before the phases it depends on completed."""
