"""Exception types raised across the media scribe pipeline."""


class ScribeError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(ScribeError):
    """Startup configuration cannot be resolved (unknown backend, missing key)."""


class ExtractionNoise(ScribeError):
    """Input that carries no usable media reference. Logged, never propagated."""


class BackendError(ScribeError):
    """A backend failed to process a payload."""


class BackendTimeout(BackendError):
    """A backend did not finish within the per-item timeout."""


class LedgerError(ScribeError):
    """Base class for dedup ledger errors."""


class LedgerIOError(LedgerError):
    """The ledger could not be read from or persisted to stable storage."""


class LedgerStateError(LedgerError):
    """A ledger transition was requested for a key that is not reserved."""


class SinkPublishError(ScribeError):
    """A result could not be written or published."""


class PipelineClosedError(ScribeError):
    """A submission arrived after shutdown began."""
