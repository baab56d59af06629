"""Service de clustering par grille pour l'affichage cartographique."""
import math
from typing import Dict, Iterable, List, Tuple

from geosearch.config import settings
from geosearch.geo.distance import GeoPoint
from geosearch.logger import logger
from geosearch.models import Cluster, Listing

CellKey = Tuple[int, int]


class GridClusterer:  # pylint: disable=too-few-public-methods
    """Regroupe les annonces d'un viewport dans une grille dépendant du zoom."""

    def __init__(
            self,
            base_grid_size: float = settings.CLUSTER_BASE_GRID_SIZE,
            zoom_threshold: int = settings.CLUSTER_ZOOM_THRESHOLD):
        """
        Args:
            base_grid_size: Taille de cellule en degrés jusqu'au zoom seuil (0.1° ≈ 11km)
            zoom_threshold: Zoom au-delà duquel la grille est divisée par 2 à chaque niveau
        """
        self.base_grid_size = base_grid_size
        self.zoom_threshold = zoom_threshold

    def grid_size(self, zoom: int) -> float:
        """Taille de cellule en degrés : plus fine quand le zoom augmente."""
        return self.base_grid_size / (2 ** max(0, zoom - self.zoom_threshold))

    @staticmethod
    def _cell_key(point: GeoPoint, grid_size: float) -> CellKey:
        # floor et non int() : les coordonnées négatives ne doivent pas fusionner autour de 0
        return math.floor(point.lat / grid_size), math.floor(point.lng / grid_size)

    def cluster(self, listings: Iterable[Listing], zoom: int) -> List[Cluster]:
        """
        Agrège les annonces en clusters (centroïde, nombre, ids, prix moyen).

        Les annonces sans coordonnées sont ignorées. Une cellule contenant une
        seule annonce produit un cluster de taille 1.
        """
        grid = self.grid_size(zoom)
        cells: Dict[CellKey, List[Listing]] = {}

        skipped = 0
        for listing in listings:
            point = GeoPoint.from_listing(listing)
            if point is None:
                skipped += 1
                continue
            cells.setdefault(self._cell_key(point, grid), []).append(listing)

        # 🔒 ordre déterministe des cellules
        clusters = [self._reduce(cells[key]) for key in sorted(cells)]

        logger.debug(
            "Clustering zoom={} grille={}°: {} clusters, {} annonces sans coordonnées",
            zoom, grid, len(clusters), skipped,
        )
        return clusters

    @staticmethod
    def _reduce(members: List[Listing]) -> Cluster:
        count = len(members)
        avg_lat = sum(m.latitude for m in members) / count
        avg_lng = sum(m.longitude for m in members) / count

        prices = [m.monthly_rent for m in members if m.monthly_rent is not None]
        average_price = round(sum(prices) / len(prices), 2) if prices else None

        return Cluster(
            center_latitude=round(avg_lat, 6),
            center_longitude=round(avg_lng, 6),
            count=count,
            listing_ids=[m.id for m in members],
            average_price=average_price,
        )
