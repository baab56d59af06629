"""Prédicat de recherche d'annonces similaires à une annonce de référence."""
from dataclasses import dataclass
from decimal import Decimal
from typing import Tuple

from geosearch.config import settings
from geosearch.models import Listing, ListingStatus
from geosearch.search.predicates import Predicate, between, eq, ne


@dataclass(frozen=True)
class SimilarityBands:
    """Tolérances relatives autour de la référence (0.30 = ±30 %)."""
    price_tolerance: float = settings.SIMILAR_PRICE_TOLERANCE
    area_tolerance: float = settings.SIMILAR_AREA_TOLERANCE


def band(value: float, tolerance: float) -> Tuple[float, float]:
    """
    Bornes inclusives `value * (1 ± tolerance)`.

    Calcul en décimal : en flottant binaire 24 * 1.2 vaut 28.799999999999997,
    et une annonce pile sur la borne serait écartée.
    """
    exact = Decimal(str(value))
    margin = Decimal(str(tolerance))
    return float(exact * (1 - margin)), float(exact * (1 + margin))


def similar_predicate(reference: Listing, bands: SimilarityBands = SimilarityBands()) -> Predicate:
    """
    Construit le prédicat « même type, même gamme de prix et de surface, même secteur ».

    Chaque critère ne s'applique que si la référence renseigne le champ.
    Le secteur est le quartier s'il existe, sinon la ville.
    """
    predicate = Predicate().and_(
        eq("status", ListingStatus.ACTIVE),
        ne("id", reference.id),
    )

    if reference.property_type is not None:
        predicate = predicate.and_(eq("property_type", reference.property_type))

    if reference.rental_type is not None:
        predicate = predicate.and_(eq("rental_type", reference.rental_type))

    if reference.monthly_rent is not None:
        predicate = predicate.and_(*between(
            "monthly_rent", *band(reference.monthly_rent, bands.price_tolerance)
        ))

    if reference.area is not None:
        predicate = predicate.and_(*between(
            "area", *band(reference.area, bands.area_tolerance)
        ))

    if reference.district and reference.district.strip():
        predicate = predicate.and_(eq("district", reference.district))
    elif reference.city and reference.city.strip():
        predicate = predicate.and_(eq("city", reference.city))

    return predicate
