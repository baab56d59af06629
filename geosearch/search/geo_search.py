"""Module contenant le service de recherche géographique principal."""
# geosearch/search/geo_search.py
import asyncio
import math
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

import psutil

from geosearch.config import settings
from geosearch.errors import InvalidArgumentError, ResultSetTooLargeError
from geosearch.geo.clustering import GridClusterer
from geosearch.geo.distance import GeoDistance, GeoPoint, geo_distance
from geosearch.logger import logger
from geosearch.models import (
    Bounds, Cluster, DistanceAnnotatedListing, DistanceResult, GeographicSearchRequest,
    GeoPage, Listing, ListingStatus, PageRequest, SearchFilters,
)
from geosearch.search.filters import (
    DEFAULT_SORT, DISTANCE, SortSpec, box_clauses, build_predicate,
    check_filter_ranges, resolve_sort,
)
from geosearch.search.predicates import Predicate
from geosearch.search.similarity import SimilarityBands, similar_predicate
from geosearch.store.base import ListingStore


@dataclass
class SearchContext:
    """Contexte partagé pour une opération de recherche."""
    operation: str
    timeout: float
    start_time: float


class GeoSearchService:
    """
    Recherche par rayon, viewport, plus proches voisins, similarité et clustering.

    Le service est sans état : chaque appel lit le magasin et construit ses
    résultats. Les paramètres invalides sont rejetés avant tout appel au magasin.
    """

    def __init__(
            self,
            store: ListingStore,
            geo: GeoDistance = geo_distance,
            clusterer: Optional[GridClusterer] = None,
            bands: Optional[SimilarityBands] = None,
            max_scan_rows: int = settings.MAX_SCAN_ROWS,
            nearest_radius_km: float = settings.NEAREST_SEARCH_RADIUS_KM,
            default_timeout: float = settings.QUERY_TIMEOUT_SECONDS):
        self.store = store
        self.geo = geo
        self.clusterer = clusterer or GridClusterer()
        self.bands = bands or SimilarityBands()
        self.max_scan_rows = max_scan_rows
        self.nearest_radius_km = nearest_radius_km
        self.default_timeout = default_timeout

    # -----------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------
    @staticmethod
    def _validate_point(latitude: float, longitude: float) -> None:
        if latitude is None or longitude is None:
            raise InvalidArgumentError("latitude and longitude are required")
        if not (math.isfinite(latitude) and -90.0 <= latitude <= 90.0):
            raise InvalidArgumentError(f"latitude must be between -90 and 90, got {latitude}")
        if not (math.isfinite(longitude) and -180.0 <= longitude <= 180.0):
            raise InvalidArgumentError(f"longitude must be between -180 and 180, got {longitude}")

    @staticmethod
    def _validate_radius(radius_km: float) -> None:
        if radius_km is None or not math.isfinite(radius_km) or radius_km <= 0:
            raise InvalidArgumentError(f"radius_km must be greater than 0, got {radius_km}")
        if radius_km > settings.MAX_RADIUS_KM:
            raise InvalidArgumentError(
                f"radius_km cannot exceed {settings.MAX_RADIUS_KM} km, got {radius_km}"
            )

    def _validate_bounds(self, bounds: Bounds) -> None:
        self._validate_point(bounds.north, bounds.east)
        self._validate_point(bounds.south, bounds.west)
        if bounds.north < bounds.south:
            raise InvalidArgumentError("north latitude must not be below south latitude")
        if bounds.east < bounds.west:
            # viewport traversant l'antiméridien : refusé (seules les boîtes de rayon sont repliées)
            raise InvalidArgumentError("east longitude must not be below west longitude")

    @staticmethod
    def _validate_limit(limit: int, maximum: int = settings.MAX_RESULT_LIMIT) -> None:
        if limit is None or limit <= 0:
            raise InvalidArgumentError(f"limit must be at least 1, got {limit}")
        if limit > maximum:
            raise InvalidArgumentError(f"limit cannot exceed {maximum}, got {limit}")

    def _validate_page(self, page: PageRequest) -> None:
        if page.offset < 0:
            raise InvalidArgumentError(f"offset cannot be negative, got {page.offset}")
        self._validate_limit(page.limit, settings.MAX_PAGE_SIZE)

    @staticmethod
    def _validate_zoom(zoom: int) -> None:
        if zoom is None or not settings.MIN_ZOOM <= zoom <= settings.MAX_ZOOM:
            raise InvalidArgumentError(
                f"zoom must be between {settings.MIN_ZOOM} and {settings.MAX_ZOOM}, got {zoom}"
            )

    # -----------------------------------------------------------------
    # Accès au magasin
    # -----------------------------------------------------------------
    def _context(self, operation: str, timeout: Optional[float]) -> SearchContext:
        return SearchContext(
            operation=operation,
            timeout=self.default_timeout if timeout is None else timeout,
            start_time=time.time(),
        )

    async def _scan(
            self,
            predicate: Predicate,
            sort: SortSpec,
            page: PageRequest,
            ctx: SearchContext) -> Tuple[List[Listing], int]:
        """Scan du magasin borné par le délai de l'opération."""
        return await asyncio.wait_for(
            self.store.scan(predicate, sort, page, timeout=ctx.timeout),
            timeout=ctx.timeout,
        )

    async def _bounded_scan(
            self,
            predicate: Predicate,
            sort: SortSpec,
            ctx: SearchContext) -> List[Listing]:
        """Scan sans pagination côté appelant, plafonné à `max_scan_rows`."""
        page = PageRequest(offset=0, limit=self.max_scan_rows + 1)
        items, total = await self._scan(predicate, sort, page, ctx)
        if total > self.max_scan_rows:
            logger.warning(
                "{op}: {total} annonces correspondent, plafond {cap} dépassé",
                op=ctx.operation, total=total, cap=self.max_scan_rows,
            )
            raise ResultSetTooLargeError(total, self.max_scan_rows)
        return items

    def _annotate(self, listing: Listing, latitude: float, longitude: float) -> DistanceAnnotatedListing:
        return DistanceAnnotatedListing(
            listing=listing,
            distance_km=self.geo.distance_km(latitude, longitude, listing.latitude, listing.longitude),
            bearing_degrees=self.geo.bearing_degrees(
                latitude, longitude, listing.latitude, listing.longitude
            ),
        )

    def _log_done(self, ctx: SearchContext, results: int, total: Optional[int] = None) -> float:
        duration = time.time() - ctx.start_time
        memory_mb = psutil.Process().memory_info().rss / 1024 / 1024
        logger.info(
            "{op}: {results} résultats (total={total}) | Durée = {duration:.4f}s | RAM = {ram:.2f} Mo",
            op=ctx.operation, results=results, total=total if total is not None else results,
            duration=duration, ram=memory_mb,
        )
        return duration * 1000

    # -----------------------------------------------------------------
    # Recherches
    # -----------------------------------------------------------------
    async def search_within_radius(
            self,
            latitude: float,
            longitude: float,
            radius_km: float,
            filters: Optional[SearchFilters] = None,
            page: Optional[PageRequest] = None,
            timeout: Optional[float] = None) -> GeoPage:
        """
        Annonces actives à moins de `radius_km` du centre, triées par distance.

        Le magasin est interrogé avec une boîte englobante, puis chaque candidat
        de la page est vérifié avec la distance exacte. La page renvoyée peut
        donc contenir moins d'éléments que demandé ; `total` reste le nombre
        de candidats de la boîte.
        """
        page = page or PageRequest()
        self._validate_point(latitude, longitude)
        self._validate_radius(radius_km)
        self._validate_page(page)
        check_filter_ranges(filters)
        ctx = self._context("radius", timeout)

        logger.debug(
            "Recherche dans un rayon de {radius}km autour de ({lat}, {lng})",
            radius=radius_km, lat=latitude, lng=longitude,
        )

        center = GeoPoint(latitude, longitude)
        south, north, west, east = self.geo.bounding_box(latitude, longitude, radius_km)
        predicate = build_predicate(filters).and_(*box_clauses(south, north, west, east))

        sort = resolve_sort(filters, point=center)
        if filters is None or filters.sort_by is None:
            sort = SortSpec(DISTANCE, point=center)

        candidates, total = await self._scan(predicate, sort, page, ctx)

        annotated = [self._annotate(c, latitude, longitude) for c in candidates]
        inside = [a for a in annotated if a.distance_km <= radius_km]
        inside.sort(key=lambda a: a.distance_km)

        if len(inside) < len(annotated):
            logger.debug(
                "{dropped} candidats hors du rayon exact écartés",
                dropped=len(annotated) - len(inside),
            )

        query_time_ms = self._log_done(ctx, len(inside), total)
        return GeoPage(
            items=inside, total=total, offset=page.offset, limit=page.limit,
            query_time_ms=query_time_ms,
        )

    async def search_within_bounds(
            self,
            bounds: Bounds,
            filters: Optional[SearchFilters] = None,
            page: Optional[PageRequest] = None,
            timeout: Optional[float] = None) -> GeoPage:
        """
        Annonces actives dans le viewport, annotées depuis le centre de la boîte.

        La distance au centre sert seulement à l'affichage ou au tri côté client.
        """
        page = page or PageRequest()
        self._validate_bounds(bounds)
        self._validate_page(page)
        check_filter_ranges(filters)
        ctx = self._context("bounds", timeout)

        logger.debug(
            "Recherche dans le viewport N:{n} S:{s} E:{e} W:{w}",
            n=bounds.north, s=bounds.south, e=bounds.east, w=bounds.west,
        )

        center_lat, center_lng = bounds.center
        predicate = build_predicate(filters).and_(
            *box_clauses(bounds.south, bounds.north, bounds.west, bounds.east)
        )
        sort = resolve_sort(filters, point=GeoPoint(center_lat, center_lng))

        listings, total = await self._scan(predicate, sort, page, ctx)
        items = [self._annotate(l, center_lat, center_lng) for l in listings]

        query_time_ms = self._log_done(ctx, len(items), total)
        return GeoPage(
            items=items, total=total, offset=page.offset, limit=page.limit,
            query_time_ms=query_time_ms,
        )

    async def find_nearest(
            self,
            latitude: float,
            longitude: float,
            limit: int = 10,
            filters: Optional[SearchFilters] = None,
            timeout: Optional[float] = None) -> List[DistanceAnnotatedListing]:
        """
        Les `limit` annonces actives les plus proches du point.

        Les candidats sont cherchés dans une boîte de `nearest_radius_km` (50 km
        par défaut) sans élargissement : une zone peu dense peut renvoyer moins
        de `limit` résultats.
        """
        self._validate_point(latitude, longitude)
        self._validate_limit(limit)
        check_filter_ranges(filters)
        ctx = self._context("nearest", timeout)

        logger.debug(
            "Recherche des {limit} annonces les plus proches de ({lat}, {lng})",
            limit=limit, lat=latitude, lng=longitude,
        )

        point = GeoPoint(latitude, longitude)
        south, north, west, east = self.geo.bounding_box(latitude, longitude, self.nearest_radius_km)
        predicate = build_predicate(filters).and_(*box_clauses(south, north, west, east))

        candidates = await self._bounded_scan(predicate, SortSpec(DISTANCE, point=point), ctx)

        annotated = [self._annotate(c, latitude, longitude) for c in candidates]
        annotated.sort(key=lambda a: a.distance_km)
        nearest = annotated[:limit]

        self._log_done(ctx, len(nearest), len(candidates))
        return nearest

    async def find_similar(
            self,
            listing_id: int,
            limit: int = 10,
            timeout: Optional[float] = None) -> List[Listing]:
        """
        Annonces actives proches de la référence (type, prix, surface, secteur).

        Une référence introuvable donne une liste vide, pas une erreur.
        """
        self._validate_limit(limit)
        ctx = self._context("similar", timeout)

        reference = await asyncio.wait_for(
            self.store.get_by_id(listing_id, timeout=ctx.timeout), timeout=ctx.timeout
        )
        if reference is None:
            logger.info("Annonce de référence {id} introuvable : aucun résultat", id=listing_id)
            return []

        predicate = similar_predicate(reference, self.bands)
        similar, total = await self._scan(
            predicate, DEFAULT_SORT, PageRequest(offset=0, limit=limit), ctx
        )

        self._log_done(ctx, len(similar), total)
        return similar

    async def get_clusters(
            self,
            bounds: Bounds,
            zoom: int,
            timeout: Optional[float] = None) -> List[Cluster]:
        """Clusters de grille des annonces actives du viewport, recalculés à chaque appel."""
        self._validate_bounds(bounds)
        self._validate_zoom(zoom)
        ctx = self._context("clusters", timeout)

        logger.debug(
            "Clusters zoom {zoom} dans N:{n} S:{s} E:{e} W:{w}",
            zoom=zoom, n=bounds.north, s=bounds.south, e=bounds.east, w=bounds.west,
        )

        predicate = build_predicate(None).and_(
            *box_clauses(bounds.south, bounds.north, bounds.west, bounds.east)
        )
        listings = await self._bounded_scan(predicate, SortSpec("id"), ctx)
        clusters = self.clusterer.cluster(listings, zoom)

        self._log_done(ctx, len(clusters), len(listings))
        return clusters

    async def search_by_criteria(
            self,
            filters: SearchFilters,
            page: Optional[PageRequest] = None,
            timeout: Optional[float] = None) -> GeoPage:
        """
        Recherche multicritère paginée, avec statut explicite (ACTIVE par défaut).

        Si le filtre porte un point de référence, chaque résultat est annoté de
        sa distance et de son cap ; sinon ces valeurs valent 0.
        """
        page = page or PageRequest()
        self._validate_page(page)
        check_filter_ranges(filters)
        point = None
        if filters.latitude is not None and filters.longitude is not None:
            self._validate_point(filters.latitude, filters.longitude)
            point = GeoPoint(filters.latitude, filters.longitude)
        if filters.radius_km is not None:
            self._validate_radius(filters.radius_km)
        ctx = self._context("criteria", timeout)

        predicate = build_predicate(
            filters,
            status=filters.status or ListingStatus.ACTIVE,
            include_location=True,
        )
        sort = resolve_sort(filters, point=point)
        listings, total = await self._scan(predicate, sort, page, ctx)

        if point is not None:
            items = [self._annotate(l, point.lat, point.lng) for l in listings]
        else:
            items = [
                DistanceAnnotatedListing(listing=l, distance_km=0.0, bearing_degrees=0.0)
                for l in listings
            ]

        query_time_ms = self._log_done(ctx, len(items), total)
        return GeoPage(
            items=items, total=total, offset=page.offset, limit=page.limit,
            query_time_ms=query_time_ms,
        )

    async def perform_geographic_search(
            self,
            request: GeographicSearchRequest,
            timeout: Optional[float] = None) -> GeoPage:
        """Recherche par rayon ou par viewport selon les paramètres fournis."""
        is_radius = request.is_radius_search()
        is_bounds = request.is_bounds_search()
        if is_radius and is_bounds:
            raise InvalidArgumentError(
                "Cannot use both radius search and bounding box search simultaneously"
            )
        page = PageRequest.of(request.page, request.size)
        if is_radius:
            return await self.search_within_radius(
                request.latitude, request.longitude, request.radius_km,
                filters=request.filters, page=page, timeout=timeout,
            )
        if is_bounds:
            bounds = Bounds(
                north=request.north, south=request.south,
                east=request.east, west=request.west,
            )
            return await self.search_within_bounds(
                bounds, filters=request.filters, page=page, timeout=timeout
            )
        raise InvalidArgumentError(
            "Either radius search or bounding box search parameters must be provided"
        )

    def calculate_distance(
            self,
            lat1: float,
            lng1: float,
            lat2: float,
            lng2: float) -> DistanceResult:
        """Distance et cap entre deux points."""
        self._validate_point(lat1, lng1)
        self._validate_point(lat2, lng2)
        return DistanceResult(
            start_latitude=lat1,
            start_longitude=lng1,
            end_latitude=lat2,
            end_longitude=lng2,
            distance_km=self.geo.distance_km(lat1, lng1, lat2, lng2),
            bearing_degrees=self.geo.bearing_degrees(lat1, lng1, lat2, lng2),
        )


__all__ = ["GeoSearchService", "SearchContext"]
