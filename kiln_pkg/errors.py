"""
Error types raised by the Kiln build pipeline.

Every error takes ``(message, path=None)`` positionally so instances survive
being pickled back from worker processes.
"""


class BuildError(Exception):
    """Base class for build failures, optionally scoped to a source path."""

    def __init__(self, message, path=None):
        super().__init__(message, path)
        self.message = message
        self.path = path

    def __str__(self):
        if self.path:
            return f"{self.path}: {self.message}"
        return self.message


class ConfigurationError(BuildError):
    """Invalid configuration; aborts the build before any processing."""


class LayoutCycleError(ConfigurationError):
    """A layout chain refers back to itself or is deeper than allowed."""


class DocumentParseError(BuildError):
    """A single document could not be read or routed."""


class LayoutNotFoundError(BuildError):
    """A document or layout names a layout that does not exist."""


class TemplateRenderError(BuildError):
    """The template engine failed while rendering a document."""


class OutputCollisionError(BuildError):
    """Two sources resolve to the same output path."""
