"""
Exception types for the scent coverage engine
"""


class ScentCoverageError(Exception):
    """Base class for all scent coverage errors"""


class NoValidPolygonsError(ScentCoverageError, ValueError):
    """Raised when a union is requested over zero valid detection polygons"""


class CoverageUnavailableError(ScentCoverageError, RuntimeError):
    """
    Raised when a scope has stored polygons but no aggregate could be produced
    and there is no previously computed coverage to fall back to
    """

    def __init__(self, scope: str, reason: str):
        super().__init__(f"Coverage for scope '{scope}' unavailable: {reason}")
        self.scope = scope
        self.reason = reason


class SourceUnavailableError(ScentCoverageError, RuntimeError):
    """Raised by measurement sources when the backing store cannot be read"""
