"""
Construction du prédicat de recherche à partir de `SearchFilters`.

Chaque règle lit un groupe de champs optionnels et renvoie les clauses à
ajouter ; `build_predicate` replie la liste des règles sur un prédicat de
départ. Un champ absent ne produit aucune clause.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from functools import reduce
from typing import Callable, List, Optional, Tuple

from geosearch.errors import InvalidArgumentError
from geosearch.geo.distance import GeoPoint, geo_distance
from geosearch.models import ListingStatus, SearchFilters, SortKey
from geosearch.search.predicates import (
    AnyOf, Clause, Predicate, between, eq, ge, gt, icontains, is_in, is_null,
    le, lt, lt_field, not_null, superset, within_km,
)

Rule = Callable[[SearchFilters, date], Tuple[Clause, ...]]

# (champ du filtre, attribut de l'annonce)
FEATURE_FLAGS = (
    ("parking_required", "parking_available"),
    ("pet_allowed", "pet_allowed"),
    ("furnished", "furnished"),
    ("short_term_available", "short_term_available"),
)

# (préfixe min/max du filtre, attribut de l'annonce)
NUMERIC_RANGES = (
    ("price", "monthly_rent"),
    ("deposit", "deposit"),
    ("area", "area"),
    ("rooms", "rooms"),
    ("bathrooms", "bathrooms"),
    ("floor", "floor"),
)

SORT_FIELDS = {
    SortKey.PRICE: "monthly_rent",
    SortKey.DEPOSIT: "deposit",
    SortKey.AREA: "area",
    SortKey.CREATED: "created_date",
    SortKey.MODIFIED: "modified_date",
    SortKey.AVAILABLE: "available_date",
    SortKey.ROOMS: "rooms",
    SortKey.FLOOR: "floor",
}


@dataclass(frozen=True)
class SortSpec:
    """Tri demandé au magasin. `field == "distance"` exige un point de référence."""
    field: str
    descending: bool = False
    point: Optional[GeoPoint] = None


DEFAULT_SORT = SortSpec("created_date", descending=True)
DISTANCE = "distance"


def _has_text(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


# ---------------------------------------------------------------------------
# Règles
# ---------------------------------------------------------------------------

def _type_rule(f: SearchFilters, _today: date) -> Tuple[Clause, ...]:
    clauses: List[Clause] = []
    if f.property_types:
        clauses.append(is_in("property_type", f.property_types))
    if f.rental_types:
        clauses.append(is_in("rental_type", f.rental_types))
    return tuple(clauses)


def _range_rule(f: SearchFilters, _today: date) -> Tuple[Clause, ...]:
    clauses: List[Clause] = []
    for name, attr in NUMERIC_RANGES:
        low = getattr(f, f"min_{name}")
        high = getattr(f, f"max_{name}")
        if low is not None:
            clauses.append(ge(attr, low))
        if high is not None:
            clauses.append(le(attr, high))
    if f.max_maintenance_fee is not None:
        clauses.append(le("maintenance_fee", f.max_maintenance_fee))
    return tuple(clauses)


def _floor_rule(f: SearchFilters, _today: date) -> Tuple[Clause, ...]:
    clauses: List[Clause] = []
    if f.exclude_basement:
        clauses.append(AnyOf((gt("floor", 0), is_null("floor"))))
    if f.exclude_rooftop:
        # étage ou nombre d'étages inconnu : on garde l'annonce
        clauses.append(AnyOf((
            lt_field("floor", "total_floors"),
            is_null("total_floors"),
            is_null("floor"),
        )))
    return tuple(clauses)


def _feature_rule(f: SearchFilters, _today: date) -> Tuple[Clause, ...]:
    clauses: List[Clause] = [
        eq(attr, getattr(f, name))
        for name, attr in FEATURE_FLAGS
        if getattr(f, name) is not None
    ]
    if f.required_options:
        clauses.append(superset("options", f.required_options))
    return tuple(clauses)


def _text_rule(f: SearchFilters, _today: date) -> Tuple[Clause, ...]:
    clauses: List[Clause] = []
    if _has_text(f.city):
        clauses.append(icontains("city", f.city.strip()))
    if _has_text(f.district):
        clauses.append(icontains("district", f.district.strip()))
    if _has_text(f.address_keyword):
        clauses.append(icontains("address", f.address_keyword.strip()))
    if f.zip_codes:
        clauses.append(is_in("zip_code", f.zip_codes))
    if _has_text(f.keyword):
        keyword = f.keyword.strip()
        clauses.append(AnyOf((
            icontains("title", keyword),
            icontains("description", keyword),
            icontains("address", keyword),
        )))
    return tuple(clauses)


def _date_rule(f: SearchFilters, today: date) -> Tuple[Clause, ...]:
    clauses: List[Clause] = []
    if f.available_from is not None:
        clauses.append(ge("available_date", f.available_from))
    if f.available_to is not None:
        clauses.append(le("available_date", f.available_to))
    if f.available_now:
        clauses.append(le("available_date", today))
    if f.created_after is not None:
        clauses.append(ge("created_date", datetime.combine(f.created_after, time.min)))
    if f.created_before is not None:
        next_day = f.created_before + timedelta(days=1)
        clauses.append(lt("created_date", datetime.combine(next_day, time.min)))
    return tuple(clauses)


FILTER_RULES: Tuple[Rule, ...] = (
    _type_rule,
    _range_rule,
    _floor_rule,
    _feature_rule,
    _text_rule,
    _date_rule,
)


# ---------------------------------------------------------------------------
# API publique
# ---------------------------------------------------------------------------

def coordinates_clauses() -> Tuple[Clause, ...]:
    """Une annonce sans latitude ou longitude n'apparaît dans aucune recherche géo."""
    return not_null("latitude"), not_null("longitude")


def longitude_clauses(west: float, east: float) -> Tuple[Clause, ...]:
    """
    Fenêtre de longitude, repliée à ±180.

    Une boîte de rayon centrée près de l'antiméridien déborde de [-180, 180] :
    la partie qui dépasse est reportée de l'autre côté (lng >= ouest OU lng <= est).
    """
    if east - west >= 360.0:
        return ()
    if west < -180.0:
        return (AnyOf((ge("longitude", west + 360.0), le("longitude", east))),)
    if east > 180.0:
        return (AnyOf((ge("longitude", west), le("longitude", east - 360.0))),)
    return between("longitude", west, east)


def box_clauses(south: float, north: float, west: float, east: float) -> Tuple[Clause, ...]:
    return (
        *coordinates_clauses(),
        *between("latitude", south, north),
        *longitude_clauses(west, east),
    )


def location_clauses(f: SearchFilters) -> Tuple[Clause, ...]:
    """Filtre de proximité de la recherche par critères (boîte + rayon exact)."""
    if not f.has_location_filter():
        return ()
    south, north, west, east = geo_distance.bounding_box(f.latitude, f.longitude, f.radius_km)
    return (
        *box_clauses(south, north, west, east),
        within_km(f.latitude, f.longitude, f.radius_km),
    )


def build_predicate(
        filters: Optional[SearchFilters],
        status: ListingStatus = ListingStatus.ACTIVE,
        include_location: bool = False,
        today: Optional[date] = None) -> Predicate:
    """
    Replie les règles de filtrage sur un prédicat exigeant `status`.

    Args:
        filters: Critères optionnels (None = aucun critère)
        status: Statut exigé ; les recherches géo publiques passent toujours ACTIVE
        include_location: Ajoute le filtre de proximité (recherche par critères)
        today: Date de référence pour `available_now` (défaut : aujourd'hui)

    Returns:
        Prédicat immuable
    """
    f = filters or SearchFilters()
    ref_day = today or date.today()
    start = Predicate().and_(eq("status", status))
    predicate = reduce(lambda acc, rule: acc.and_(*rule(f, ref_day)), FILTER_RULES, start)
    if include_location:
        predicate = predicate.and_(*location_clauses(f))
    return predicate


def check_filter_ranges(filters: Optional[SearchFilters]) -> None:
    """Rejette les bornes incohérentes (min > max) avant tout appel au magasin."""
    if filters is None:
        return
    for name, _attr in NUMERIC_RANGES:
        low = getattr(filters, f"min_{name}")
        high = getattr(filters, f"max_{name}")
        if low is not None and high is not None and low > high:
            raise InvalidArgumentError(f"min_{name} cannot be greater than max_{name}")
    if (filters.available_from is not None and filters.available_to is not None
            and filters.available_from > filters.available_to):
        raise InvalidArgumentError("available_from cannot be after available_to")
    if (filters.created_after is not None and filters.created_before is not None
            and filters.created_after > filters.created_before):
        raise InvalidArgumentError("created_after cannot be after created_before")


def resolve_sort(filters: Optional[SearchFilters], point: Optional[GeoPoint] = None) -> SortSpec:
    """
    Traduit `sort_by` / `sort_direction` en tri magasin.

    Sans clé, ou avec `distance` sans point de référence : plus récentes d'abord.
    """
    if filters is None or filters.sort_by is None:
        return DEFAULT_SORT
    descending = filters.sort_direction == "desc"
    if filters.sort_by is SortKey.DISTANCE:
        if point is None:
            return DEFAULT_SORT
        return SortSpec(DISTANCE, descending=descending, point=point)
    return SortSpec(SORT_FIELDS[filters.sort_by], descending=descending)
