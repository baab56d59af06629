# tests/conftest.py
from datetime import date, datetime

import pytest
from unittest.mock import MagicMock, AsyncMock

from geosearch.models import Listing, ListingStatus, PropertyType, RentalType

# --- Jeu d'annonces de référence (Sydney) ---

SYDNEY = (-33.87, 151.21)


def make_listing(listing_id, **overrides):
    """Construit une annonce ACTIVE avec des valeurs par défaut raisonnables."""
    data = {
        "id": listing_id,
        "title": f"Listing {listing_id}",
        "latitude": SYDNEY[0],
        "longitude": SYDNEY[1],
        "status": ListingStatus.ACTIVE,
        "property_type": PropertyType.APARTMENT,
        "rental_type": RentalType.LONG_TERM,
        "monthly_rent": 500.0,
        "area": 50.0,
        "city": "Sydney",
        "created_date": datetime(2024, 1, listing_id % 28 + 1, 12, 0),
    }
    data.update(overrides)
    return Listing(**data)


@pytest.fixture
def sydney_listings():
    """Trois annonces : deux à moins de 2 km du point de référence, une à ~130 km."""
    return [
        make_listing(1, latitude=-33.87, longitude=151.21, monthly_rent=400.0),
        make_listing(2, latitude=-33.88, longitude=151.22, monthly_rent=600.0),
        make_listing(3, latitude=-34.90, longitude=150.60, monthly_rent=900.0),
    ]


@pytest.fixture
def memory_store(sydney_listings):
    """Magasin en mémoire chargé avec les annonces de Sydney."""
    from geosearch.store.memory import InMemoryListingStore

    return InMemoryListingStore(sydney_listings)


@pytest.fixture
def geo_service(memory_store):
    """Service de recherche réel branché sur le magasin en mémoire."""
    from geosearch.search.geo_search import GeoSearchService

    return GeoSearchService(store=memory_store)


# --- Mocks des clients de bas niveau ---

@pytest.fixture
def mock_db_connector():
    """Fixture pour un mock du connecteur PostgreSQL."""
    db_conn = MagicMock()
    db_conn.execute_query = AsyncMock(return_value=[])
    db_conn.fetch_value = AsyncMock(return_value=0)
    return db_conn


@pytest.fixture
def mock_cache_manager():
    """Fixture pour un mock du gestionnaire de cache Redis."""
    cache = MagicMock()
    cache.get = AsyncMock(return_value=None)  # Par défaut, le cache est toujours vide (miss)
    cache.set = AsyncMock()
    return cache


@pytest.fixture
def today():
    return date(2024, 6, 15)
