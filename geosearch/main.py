"""Main module for the FastAPI application."""
import asyncio
from contextlib import asynccontextmanager
from typing import Annotated, List

from fastapi import Depends, FastAPI, HTTPException, Path, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import TypeAdapter
from redis.exceptions import RedisError

from .cache import cache_manager
from .config import settings
from .db.postgres_connector import PostgresConnector
from .errors import InvalidArgumentError, ResultSetTooLargeError, StoreUnavailableError
from .logger import logger
from .models import (
    Bounds, BoundsQuery, Cluster, DistanceAnnotatedListing, DistanceResult,
    GeographicSearchRequest, GeoPage, Listing, PageRequest, RadiusQuery, SearchFilters,
)
from .search.geo_search import GeoSearchService
from .store.postgres import UNAVAILABLE_ERRORS, PostgresListingStore


# --- Initialisation des variables globales ---

# Connecteur de base de données (pool ouvert au démarrage)
db_connector: PostgresConnector = PostgresConnector(settings.DATABASE_URL)

# Magasin d'annonces adossé à PostgreSQL
listing_store: PostgresListingStore = PostgresListingStore(db_connector, settings.LISTINGS_TABLE)

search_service: GeoSearchService = GeoSearchService(store=listing_store)
# Alias `service` pour les tests qui remplacent `main.service`
service = search_service

_nearest_adapter = TypeAdapter(List[DistanceAnnotatedListing])

RADIUS_PAGE_NOTE = (
    "The bounding-box pre-filter is applied before paging and the exact radius "
    "check after it, so a page can hold fewer items than `size` while `total` "
    "counts the bounding-box candidates."
)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Handle FastAPI startup and shutdown events."""
    logger.info("Starting up GeoSearch API...")

    try:
        await db_connector.connect()
        logger.info("PostgreSQL connection pool established successfully.")
    except UNAVAILABLE_ERRORS as e:
        logger.error("Failed to connect to PostgreSQL: {error}", error=e)

    try:
        await cache_manager.redis.ping()
        logger.info("Redis cache connected successfully.")
    except RedisError as e:
        logger.error("Failed to connect to Redis: {error}", error=e)

    yield

    logger.info("Shutting down GeoSearch API...")
    await db_connector.close()
    logger.info("PostgreSQL connection pool closed.")
    await cache_manager.close()
    logger.info("Redis connection closed.")


app = FastAPI(
    title="GeoSearch - Geospatial Property Search Service",
    lifespan=lifespan
)


def get_service() -> GeoSearchService:
    """Dépendance FastAPI pour obtenir l'instance du service de recherche."""
    return service


# --- Gestion des erreurs ---

@app.exception_handler(InvalidArgumentError)
async def invalid_argument_handler(_request: Request, exc: InvalidArgumentError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})


@app.exception_handler(ResultSetTooLargeError)
async def too_large_handler(_request: Request, exc: ResultSetTooLargeError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": str(exc), "total": exc.total, "cap": exc.cap},
    )


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(_request: Request, exc: StoreUnavailableError):
    logger.error("Listing store unavailable: {error}", error=exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": "Listing store unavailable"},
    )


@app.exception_handler(asyncio.TimeoutError)
async def timeout_handler(_request: Request, _exc: asyncio.TimeoutError):
    logger.warning("Search deadline exceeded")
    return JSONResponse(
        status_code=status.HTTP_504_GATEWAY_TIMEOUT,
        content={"error": "Search deadline exceeded"},
    )


# --- Endpoints ---

@app.get("/search/radius", response_model=GeoPage, description=RADIUS_PAGE_NOTE)
async def search_radius(
        params: Annotated[RadiusQuery, Query()],
        svc: GeoSearchService = Depends(get_service)):
    """Annonces actives dans un rayon autour d'un point, triées par distance."""
    logger.info(
        "Radius search request: ({lat}, {lng}) within {radius} km",
        lat=params.lat, lng=params.lng, radius=params.radius_km,
    )
    return await svc.search_within_radius(
        params.lat, params.lng, params.radius_km,
        filters=params.to_filters(), page=params.page_request(),
    )


@app.get("/search/bounds", response_model=GeoPage)
async def search_bounds(
        params: Annotated[BoundsQuery, Query()],
        svc: GeoSearchService = Depends(get_service)):
    """Annonces actives dans un viewport (distances mesurées depuis son centre)."""
    logger.info(
        "Bounds search request: ({s},{w}) to ({n},{e})",
        s=params.south, w=params.west, n=params.north, e=params.east,
    )
    return await svc.search_within_bounds(
        params.bounds(), filters=params.to_filters(), page=params.page_request()
    )


@app.get("/search/nearest", response_model=List[DistanceAnnotatedListing])
async def search_nearest(
        lat: float = Query(..., ge=-90, le=90),
        lng: float = Query(..., ge=-180, le=180),
        limit: int = Query(10, ge=1, le=settings.MAX_RESULT_LIMIT),
        svc: GeoSearchService = Depends(get_service)):
    """
    Les annonces les plus proches d'un point.

    Recherche limitée à un rayon fixe : une zone peu dense peut renvoyer moins
    de `limit` résultats.
    """
    logger.info("Finding {limit} nearest listings to ({lat}, {lng})", limit=limit, lat=lat, lng=lng)

    cache_key = f"nearest:{lat}:{lng}:{limit}"
    cached = await cache_manager.get(cache_key)
    if cached:
        logger.info("Cache HIT for key: {key}", key=cache_key)
        return _nearest_adapter.validate_json(cached)

    logger.info("Cache MISS for key: {key}", key=cache_key)
    results = await svc.find_nearest(lat, lng, limit)
    await cache_manager.set(cache_key, _nearest_adapter.dump_json(results).decode("utf-8"))
    return results


@app.get("/search/similar/{listing_id}", response_model=List[Listing])
async def search_similar(
        listing_id: int = Path(...),
        limit: int = Query(10, ge=1, le=settings.MAX_RESULT_LIMIT),
        svc: GeoSearchService = Depends(get_service)):
    """Annonces similaires à une annonce de référence (liste vide si elle n'existe pas)."""
    logger.info("Similar listings request: reference={id}, limit={limit}", id=listing_id, limit=limit)
    return await svc.find_similar(listing_id, limit)


@app.get("/search/clusters", response_model=List[Cluster])
async def search_clusters(
        north: float = Query(..., ge=-90, le=90),
        south: float = Query(..., ge=-90, le=90),
        east: float = Query(..., ge=-180, le=180),
        west: float = Query(..., ge=-180, le=180),
        zoom: int = Query(12, ge=settings.MIN_ZOOM, le=settings.MAX_ZOOM),
        svc: GeoSearchService = Depends(get_service)):
    """Clusters de grille pour l'affichage cartographique."""
    logger.info(
        "Getting listing clusters for zoom level {zoom} within bounds: ({s},{w}) to ({n},{e})",
        zoom=zoom, s=south, w=west, n=north, e=east,
    )
    bounds = Bounds(north=north, south=south, east=east, west=west)
    return await svc.get_clusters(bounds, zoom)


@app.post("/search/criteria", response_model=GeoPage)
async def search_criteria(
        filters: SearchFilters,
        page: int = Query(0, ge=0),
        size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
        svc: GeoSearchService = Depends(get_service)):
    """Recherche multicritère paginée."""
    logger.info("Criteria search request: {filters}", filters=filters.model_dump(exclude_none=True))
    return await svc.search_by_criteria(filters, page=PageRequest.of(page, size))


@app.post("/search/geographic", response_model=GeoPage, description=RADIUS_PAGE_NOTE)
async def search_geographic(
        request: GeographicSearchRequest,
        svc: GeoSearchService = Depends(get_service)):
    """Recherche par rayon ou par viewport selon les paramètres fournis."""
    logger.info(
        "Comprehensive geographic search request: radius={radius}, bounds={bounds}",
        radius=request.is_radius_search(), bounds=request.is_bounds_search(),
    )
    return await svc.perform_geographic_search(request)


@app.get("/search/distance", response_model=DistanceResult)
async def search_distance(
        lat1: float = Query(..., ge=-90, le=90),
        lng1: float = Query(..., ge=-180, le=180),
        lat2: float = Query(..., ge=-90, le=90),
        lng2: float = Query(..., ge=-180, le=180),
        svc: GeoSearchService = Depends(get_service)):
    """Distance et cap entre deux points."""
    return svc.calculate_distance(lat1, lng1, lat2, lng2)


@app.get("/")
def root():
    """Root endpoint to check API status."""
    return {"status": "ok", "message": "GeoSearch API is running 🚀"}


@app.get("/health", status_code=status.HTTP_200_OK, tags=["Monitoring"])
async def health_check():
    """
    Health check endpoint.

    Checks connectivity to the database and Redis.
    Returns 200 OK if both are reachable, otherwise 503 Service Unavailable.
    """
    services_status = {"database": "ok", "redis": "ok"}
    try:
        await cache_manager.redis.ping()
    except RedisError:
        services_status["redis"] = "error"
        logger.error("Health check failed: Redis connection error.")

    try:
        await db_connector.execute_query("SELECT 1")
    except UNAVAILABLE_ERRORS:
        services_status["database"] = "error"
        logger.error("Health check failed: Database connection error.")

    if "error" in services_status.values():
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=services_status)

    return services_status
