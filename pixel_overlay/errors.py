"""Exceptions raised by the overlay engine."""


class OverlayError(Exception):
    """Base class for all overlay errors."""


class InvalidGeometry(OverlayError, ValueError):
    """Tile or pixel coordinates are non-finite, negative or out of range."""


class TemplateImportError(OverlayError):
    """A document is not a template export this package can read."""
