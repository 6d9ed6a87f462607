"""Domain errors for BotRelease."""


class PipelineError(RuntimeError):
    """Raised when the build or packaging cannot continue safely."""
