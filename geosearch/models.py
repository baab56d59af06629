"""Modèles Pydantic pour les annonces, les filtres et les résultats de recherche."""
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from geosearch.config import settings


class ListingStatus(str, Enum):
    """Statut de publication d'une annonce."""
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    RENTED = "RENTED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"
    DELETED = "DELETED"


class PropertyType(str, Enum):
    APARTMENT = "APARTMENT"
    VILLA = "VILLA"
    STUDIO = "STUDIO"
    TWO_ROOM = "TWO_ROOM"
    THREE_ROOM = "THREE_ROOM"
    OFFICETEL = "OFFICETEL"
    HOUSE = "HOUSE"


class RentalType(str, Enum):
    LONG_TERM = "LONG_TERM"
    SHORT_TERM = "SHORT_TERM"
    MONTHLY = "MONTHLY"
    WEEKLY = "WEEKLY"
    DAILY = "DAILY"


class SortKey(str, Enum):
    """Clés de tri acceptées par les recherches."""
    PRICE = "price"
    DEPOSIT = "deposit"
    AREA = "area"
    CREATED = "created"
    MODIFIED = "modified"
    AVAILABLE = "available"
    ROOMS = "rooms"
    FLOOR = "floor"
    DISTANCE = "distance"


SORT_KEY_ALIASES = {"date": "created", "rent": "price"}


class Listing(BaseModel):  # pylint: disable=too-few-public-methods
    """Annonce de location (lecture seule pour le moteur)."""
    id: int
    title: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    zip_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: ListingStatus = ListingStatus.ACTIVE
    property_type: Optional[PropertyType] = None
    rental_type: Optional[RentalType] = None
    monthly_rent: Optional[float] = None
    deposit: Optional[float] = None
    maintenance_fee: Optional[float] = None
    area: Optional[float] = None
    rooms: Optional[int] = None
    bathrooms: Optional[int] = None
    floor: Optional[int] = None
    total_floors: Optional[int] = None
    parking_available: Optional[bool] = None
    pet_allowed: Optional[bool] = None
    furnished: Optional[bool] = None
    short_term_available: Optional[bool] = None
    options: List[str] = Field(default_factory=list)
    available_date: Optional[date] = None
    created_date: Optional[datetime] = None
    modified_date: Optional[datetime] = None

    @field_validator("options", mode="before")
    @classmethod
    def _null_options(cls, value):
        return [] if value is None else value

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class SearchFilters(BaseModel):  # pylint: disable=too-few-public-methods
    """Critères de recherche optionnels. Un champ absent n'impose aucune contrainte."""

    model_config = ConfigDict(frozen=True)

    # Seulement pour la recherche par critères ; les recherches géo imposent ACTIVE
    status: Optional[ListingStatus] = None

    property_types: Optional[List[PropertyType]] = None
    rental_types: Optional[List[RentalType]] = None

    # Prix
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    min_deposit: Optional[float] = Field(None, ge=0)
    max_deposit: Optional[float] = Field(None, ge=0)
    max_maintenance_fee: Optional[float] = Field(None, ge=0)

    # Surface et pièces
    min_area: Optional[float] = Field(None, ge=0)
    max_area: Optional[float] = Field(None, ge=0)
    min_rooms: Optional[int] = Field(None, ge=0)
    max_rooms: Optional[int] = Field(None, ge=0)
    min_bathrooms: Optional[int] = Field(None, ge=0)
    max_bathrooms: Optional[int] = Field(None, ge=0)

    # Étages
    min_floor: Optional[int] = None
    max_floor: Optional[int] = None
    exclude_basement: Optional[bool] = None
    exclude_rooftop: Optional[bool] = None

    # Équipements
    parking_required: Optional[bool] = None
    pet_allowed: Optional[bool] = None
    furnished: Optional[bool] = None
    short_term_available: Optional[bool] = None
    required_options: Optional[List[str]] = None

    # Localisation textuelle
    city: Optional[str] = None
    district: Optional[str] = None
    zip_codes: Optional[List[str]] = None
    address_keyword: Optional[str] = None
    keyword: Optional[str] = None

    # Disponibilité et dates
    available_from: Optional[date] = None
    available_to: Optional[date] = None
    available_now: Optional[bool] = None
    created_after: Optional[date] = None
    created_before: Optional[date] = None

    # Point de référence (recherche par critères)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    radius_km: Optional[float] = Field(None, gt=0)

    # Tri
    sort_by: Optional[SortKey] = None
    sort_direction: Optional[str] = None

    @field_validator("sort_by", mode="before")
    @classmethod
    def _resolve_sort_alias(cls, value):
        if isinstance(value, str):
            value = value.lower()
            return SORT_KEY_ALIASES.get(value, value)
        return value

    @field_validator("sort_direction")
    @classmethod
    def _normalize_direction(cls, value: Optional[str]) -> Optional[str]:
        # croissant sauf "desc" explicite
        if value is None:
            return None
        return "desc" if value.strip().lower() == "desc" else "asc"

    def has_location_filter(self) -> bool:
        return (
            self.latitude is not None
            and self.longitude is not None
            and self.radius_km is not None
        )


class PageRequest(BaseModel):  # pylint: disable=too-few-public-methods
    """Fenêtre de pagination (offset/limit)."""
    offset: int = 0
    limit: int = settings.DEFAULT_PAGE_SIZE

    @classmethod
    def of(cls, page: int, size: int) -> "PageRequest":
        """Construit une fenêtre depuis un numéro de page (0-based) et une taille."""
        return cls(offset=page * size, limit=size)


class Bounds(BaseModel):  # pylint: disable=too-few-public-methods
    """Viewport rectangulaire en degrés décimaux."""
    north: float
    south: float
    east: float
    west: float

    @property
    def center(self) -> tuple[float, float]:
        return (self.north + self.south) / 2.0, (self.east + self.west) / 2.0


class DistanceAnnotatedListing(BaseModel):  # pylint: disable=too-few-public-methods
    """Annonce annotée avec sa distance et son cap depuis le point de requête."""
    listing: Listing
    distance_km: float
    bearing_degrees: float


class GeoPage(BaseModel):  # pylint: disable=too-few-public-methods
    """Page de résultats annotés."""
    items: List[DistanceAnnotatedListing]
    total: int = Field(
        ...,
        description=(
            "Number of listings matched by the store query. For radius searches the "
            "page may hold fewer items than requested: candidates selected by the "
            "bounding box but outside the exact radius are dropped after paging."
        ),
    )
    offset: int
    limit: int
    query_time_ms: float = 0.0


class Cluster(BaseModel):  # pylint: disable=too-few-public-methods
    """Groupe d'annonces voisines affiché comme un seul marqueur."""
    center_latitude: float
    center_longitude: float
    count: int
    listing_ids: List[int]
    average_price: Optional[float] = None


class DistanceResult(BaseModel):  # pylint: disable=too-few-public-methods
    start_latitude: float
    start_longitude: float
    end_latitude: float
    end_longitude: float
    distance_km: float
    bearing_degrees: float


class GeographicSearchRequest(BaseModel):  # pylint: disable=too-few-public-methods
    """Requête combinée : rayon OU viewport, jamais les deux."""
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    radius_km: Optional[float] = None

    north: Optional[float] = Field(None, ge=-90, le=90)
    south: Optional[float] = Field(None, ge=-90, le=90)
    east: Optional[float] = Field(None, ge=-180, le=180)
    west: Optional[float] = Field(None, ge=-180, le=180)

    filters: SearchFilters = Field(default_factory=SearchFilters)
    page: int = Field(0, ge=0)
    size: int = Field(settings.DEFAULT_PAGE_SIZE, ge=1)

    def is_radius_search(self) -> bool:
        return (
            self.latitude is not None
            and self.longitude is not None
            and self.radius_km is not None
        )

    def is_bounds_search(self) -> bool:
        return None not in (self.north, self.south, self.east, self.west)


# Champs de SearchFilters utilisables par les recherches géo (statut et point imposés)
GEO_FILTER_FIELDS = frozenset(SearchFilters.model_fields) - {
    "status", "latitude", "longitude", "radius_km",
}


class PagedQuery(SearchFilters):  # pylint: disable=too-few-public-methods
    """Paramètres de requête HTTP : filtres + pagination."""
    page: int = Field(0, ge=0)
    size: int = Field(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE)

    def to_filters(self) -> SearchFilters:
        return SearchFilters(**self.model_dump(include=set(GEO_FILTER_FIELDS)))

    def page_request(self) -> PageRequest:
        return PageRequest.of(self.page, self.size)


class RadiusQuery(PagedQuery):  # pylint: disable=too-few-public-methods
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    radius_km: float = Field(..., gt=0)


class BoundsQuery(PagedQuery):  # pylint: disable=too-few-public-methods
    north: float = Field(..., ge=-90, le=90)
    south: float = Field(..., ge=-90, le=90)
    east: float = Field(..., ge=-180, le=180)
    west: float = Field(..., ge=-180, le=180)

    def bounds(self) -> Bounds:
        return Bounds(north=self.north, south=self.south, east=self.east, west=self.west)
