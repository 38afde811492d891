"""Error taxonomy for context preview and session evaluation."""


class ContextEngineError(Exception):
    """Base class for context engine failures."""


class NotFound(ContextEngineError):
    """The requested project does not exist."""


class UpstreamUnavailable(ContextEngineError):
    """The knowledge store could not be read."""


class SummarizationUnavailable(ContextEngineError):
    """The summarization capability failed or is not configured.

    Always recovered locally by the fallback summary; never surfaced to
    callers of the preview builder.
    """


class InvalidConfiguration(ContextEngineError):
    """Preview options or engine settings are out of range."""
