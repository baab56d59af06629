"""Magasin d'annonces en mémoire (tests, démonstrations, petits jeux de données)."""
from typing import Any, Iterable, List, Optional, Tuple

from geosearch.geo.distance import geo_distance
from geosearch.models import Listing, PageRequest
from geosearch.search.filters import DISTANCE, SortSpec
from geosearch.search.predicates import Predicate


class InMemoryListingStore:
    """Évalue les prédicats en Python. Les valeurs nulles sont triées en dernier."""

    def __init__(self, listings: Iterable[Listing] = ()):
        self._listings: List[Listing] = list(listings)

    def _sort_value(self, listing: Listing, sort: SortSpec) -> Any:
        if sort.field == DISTANCE:
            if not listing.has_coordinates or sort.point is None:
                return None
            return geo_distance.distance_km(
                sort.point.lat, sort.point.lng, listing.latitude, listing.longitude
            )
        return getattr(listing, sort.field, None)

    def _sorted(self, listings: List[Listing], sort: SortSpec) -> List[Listing]:
        present = [l for l in listings if self._sort_value(l, sort) is not None]
        missing = [l for l in listings if self._sort_value(l, sort) is None]
        # tri stable : id croissant à valeur égale
        present.sort(key=lambda l: l.id)
        present.sort(key=lambda l: self._sort_value(l, sort), reverse=sort.descending)
        return present + missing

    async def scan(
            self,
            predicate: Predicate,
            sort: SortSpec,
            page: PageRequest,
            timeout: Optional[float] = None) -> Tuple[List[Listing], int]:
        matched = [l for l in self._listings if predicate.matches(l)]
        ordered = self._sorted(matched, sort)
        return ordered[page.offset:page.offset + page.limit], len(matched)

    async def get_by_id(
            self,
            listing_id: int,
            timeout: Optional[float] = None) -> Optional[Listing]:
        return next((l for l in self._listings if l.id == listing_id), None)
