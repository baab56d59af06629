"""Calculs géométriques : distance de Haversine, cap initial, boîte englobante."""
import math
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from geosearch.config import settings


@dataclass(frozen=True)
class GeoPoint:
    """Représente un point géographique."""
    lat: float
    lng: float

    @classmethod
    def from_listing(cls, listing: Any) -> Optional['GeoPoint']:
        """Point d'une annonce, ou None si une coordonnée manque."""
        if listing.latitude is None or listing.longitude is None:
            return None
        return cls(lat=float(listing.latitude), lng=float(listing.longitude))


class GeoDistance:
    """Distances et caps sur une sphère de rayon terrestre moyen."""

    def __init__(
            self,
            earth_radius_km: float = settings.EARTH_RADIUS_KM,
            km_per_degree: float = settings.KM_PER_DEGREE):
        self.earth_radius_km = earth_radius_km
        self.km_per_degree = km_per_degree

    def distance_km(
            self,
            lat1: Optional[float],
            lng1: Optional[float],
            lat2: Optional[float],
            lng2: Optional[float]) -> float:
        """
        Distance orthodromique (formule de Haversine) en kilomètres.

        Args:
            lat1, lng1: Point de départ en degrés décimaux
            lat2, lng2: Point d'arrivée en degrés décimaux

        Returns:
            Distance arrondie à 3 décimales, 0 si une coordonnée manque
        """
        if lat1 is None or lng1 is None or lat2 is None or lng2 is None:
            return 0.0

        phi1 = math.radians(lat1)
        phi2 = math.radians(lat2)
        d_phi = math.radians(lat2 - lat1)
        d_lambda = math.radians(lng2 - lng1)

        a = (math.sin(d_phi / 2) ** 2
             + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
        # dérive flottante près des antipodes
        a = min(1.0, max(0.0, a))
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

        return round(self.earth_radius_km * c, 3)

    def bearing_degrees(
            self,
            lat1: Optional[float],
            lng1: Optional[float],
            lat2: Optional[float],
            lng2: Optional[float]) -> float:
        """
        Cap initial du point 1 vers le point 2, dans [0, 360).

        Returns:
            Cap en degrés, 0 si une coordonnée manque
        """
        if lat1 is None or lng1 is None or lat2 is None or lng2 is None:
            return 0.0

        phi1 = math.radians(lat1)
        phi2 = math.radians(lat2)
        d_lambda = math.radians(lng2 - lng1)

        y = math.sin(d_lambda) * math.cos(phi2)
        x = (math.cos(phi1) * math.sin(phi2)
             - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda))

        bearing = math.degrees(math.atan2(y, x)) % 360.0
        # -1e-17 % 360.0 == 360.0
        if bearing >= 360.0:
            bearing = 0.0
        return bearing

    def bounding_box_delta(self, radius_km: float, latitude: float) -> Tuple[float, float]:
        """
        Convertit un rayon en fenêtre (Δlat, Δlng) en degrés pour le pré-filtrage.

        La fenêtre déborde du cercle dans les coins : les candidats doivent
        ensuite être vérifiés avec la distance exacte.
        """
        lat_delta = radius_km / self.km_per_degree
        cos_lat = math.cos(math.radians(latitude))
        if cos_lat <= 1e-12:
            return lat_delta, 180.0
        lng_delta = min(180.0, radius_km / (self.km_per_degree * cos_lat))
        return lat_delta, lng_delta

    def bounding_box(
            self,
            latitude: float,
            longitude: float,
            radius_km: float) -> Tuple[float, float, float, float]:
        """Fenêtre (south, north, west, east) autour d'un point."""
        lat_delta, lng_delta = self.bounding_box_delta(radius_km, latitude)
        return (
            latitude - lat_delta,
            latitude + lat_delta,
            longitude - lng_delta,
            longitude + lng_delta,
        )


# Instance globale réutilisable
geo_distance = GeoDistance()
