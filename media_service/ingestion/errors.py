"""Error taxonomy for the ingestion pipeline.

Transient errors are retried with backoff up to the configured attempt
count; permanent errors fail the job immediately. ``DuplicateInFlight`` is a
coordination error raised to the submitter without touching job state.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class TransientError(PipelineError):
    """Retryable: provider outage, throttling, timeout."""


class PermanentError(PipelineError):
    """Never retried."""


# -- Annotator ----------------------------------------------------------------


class AnnotatorUnavailable(TransientError):
    pass


class AnnotatorQuotaExceeded(TransientError):
    """Provider throttling; backs off longer than plain outages."""


class AnnotatorRejected(PermanentError):
    pass


# -- Index --------------------------------------------------------------------


class IndexUnavailable(TransientError):
    pass


class IndexRejected(PermanentError):
    pass


# -- Coordination -------------------------------------------------------------


class DuplicateInFlight(PipelineError):
    def __init__(self, item_id: str) -> None:
        super().__init__(f"Media item '{item_id}' already has an active job")
        self.item_id = item_id


class JobNotFound(PipelineError):
    def __init__(self, item_id: str) -> None:
        super().__init__(f"No job recorded for media item '{item_id}'")
        self.item_id = item_id
