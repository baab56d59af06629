"""Exceptions du moteur de recherche géographique."""


class GeoSearchError(Exception):
    """Base exception for the geo search engine."""


class InvalidArgumentError(GeoSearchError, ValueError):
    """Query rejected before any store call (bad radius, bounds, zoom, limit...)."""


class ResultSetTooLargeError(GeoSearchError):
    """A scan would materialize more rows than the configured cap."""

    def __init__(self, total: int, cap: int):
        self.total = total
        self.cap = cap
        super().__init__(
            f"Scan matched {total} listings, above the cap of {cap}; narrow the query"
        )


class StoreUnavailableError(GeoSearchError):
    """The listing store could not be reached. Never retried by the engine."""
