"""Contrat du magasin d'annonces consommé par le moteur."""
from typing import List, Optional, Protocol, Tuple

from geosearch.models import Listing, PageRequest
from geosearch.search.filters import SortSpec
from geosearch.search.predicates import Predicate


class ListingStore(Protocol):
    """
    Magasin en lecture seule, interrogeable par prédicat.

    Les implémentations lèvent `StoreUnavailableError` quand le backend est
    injoignable ; le moteur ne fait jamais de nouvel essai.
    """

    async def scan(
            self,
            predicate: Predicate,
            sort: SortSpec,
            page: PageRequest,
            timeout: Optional[float] = None) -> Tuple[List[Listing], int]:
        """Renvoie la page demandée et le nombre total de correspondances."""
        ...

    async def get_by_id(
            self,
            listing_id: int,
            timeout: Optional[float] = None) -> Optional[Listing]:
        ...
