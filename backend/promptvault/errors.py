"""Error taxonomy for the import pipeline.

The worker endpoint maps these onto transport semantics: permanent errors
are acknowledged without redelivery, retryable ones ask the queue to try
again.
"""


class ImportPipelineError(Exception):
    """Base class for errors raised while importing a file."""

    retryable = False


class ImportValidationError(ImportPipelineError):
    """Bad input shape (work item, platform, ownership). Never retried."""


class ForeignWorkItemError(ImportValidationError):
    """The work item does not match the session it names (user or platform).

    The session belongs to someone else's run, so it is left untouched.
    """


class TransientIOError(ImportPipelineError):
    """Network or storage blip. The transport may redeliver."""

    retryable = True


class BlobFetchError(ImportPipelineError):
    """The blob cannot be fetched and retrying will not help."""


class PersistenceFailure(ImportPipelineError):
    """A single prompt could not be written downstream."""


class UnrecoverableWorkerFailure(ImportPipelineError):
    """Anything else that stops a worker run, including timeouts."""


class ParseDegradation(Exception):
    """A parser stage did not recognise its input; the next stage is tried.

    Informational only. Parsers catch this internally and it never reaches
    callers of ``parse``.
    """
