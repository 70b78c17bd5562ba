"""
Exception hierarchy for regrider.

Every failure is terminal for the file being processed: nothing is retried
and no partially written output is kept.
"""


class RegridError(Exception):
    """Base class for all regrider errors."""


class ConfigurationError(RegridError, ValueError):
    """Conflicting or missing options, detected before any I/O."""


class NotFoundError(RegridError, LookupError):
    """A named grid, dataset, group or attribute is absent from an archive."""


class LayoutError(RegridError, RuntimeError):
    """An operation was invoked against the wrong buffer layout."""


class FilterError(RegridError, ValueError):
    """Unknown filter type or invalid filter scale."""


class DecimationError(RegridError, ValueError):
    """Target dimensions do not evenly divide the current dimensions."""


class ArchiveError(RegridError, ValueError):
    """An archive is readable but its header, attributes or shapes are invalid."""
