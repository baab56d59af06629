# tests/test_geo_search_service.py
import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from geosearch.errors import InvalidArgumentError, ResultSetTooLargeError
from geosearch.models import (
    Bounds, GeographicSearchRequest, ListingStatus, PageRequest, SearchFilters,
)
from geosearch.search.geo_search import GeoSearchService
from geosearch.store.memory import InMemoryListingStore
from .conftest import make_listing
from .test_utils import print_test_name, print_test_result


@pytest.mark.asyncio
class TestRadiusSearch:
    """Tests pour la recherche par rayon."""

    async def test_radius_sydney_scenario(self, geo_service):
        test_name = "test_radius_sydney_scenario"
        print_test_name(test_name)
        try:
            page = await geo_service.search_within_radius(-33.87, 151.21, 5)
            assert [item.listing.id for item in page.items] == [1, 2]
            assert page.items[0].distance_km == 0.0
            assert 1.2 < page.items[1].distance_km < 1.6
            assert page.offset == 0
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_results_sorted_and_within_radius(self):
        test_name = "test_results_sorted_and_within_radius"
        print_test_name(test_name)
        try:
            listings = [
                make_listing(i, latitude=-33.87 + (i % 9 - 4) * 0.02, longitude=151.21 + (i % 7 - 3) * 0.025)
                for i in range(1, 60)
            ]
            service = GeoSearchService(store=InMemoryListingStore(listings))
            page = await service.search_within_radius(-33.87, 151.21, 6, page=PageRequest(limit=100))
            distances = [item.distance_km for item in page.items]
            assert distances == sorted(distances)
            assert all(d <= 6 for d in distances)
            # les coins de la boîte sont écartés par le contrôle exact
            assert page.total >= len(page.items)
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_only_active_listings(self):
        test_name = "test_only_active_listings"
        print_test_name(test_name)
        try:
            store = InMemoryListingStore([
                make_listing(1),
                make_listing(2, status=ListingStatus.RENTED),
                make_listing(3, status=ListingStatus.DRAFT),
            ])
            page = await GeoSearchService(store=store).search_within_radius(-33.87, 151.21, 1)
            assert [item.listing.id for item in page.items] == [1]
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_filters_applied(self, geo_service):
        test_name = "test_filters_applied"
        print_test_name(test_name)
        try:
            page = await geo_service.search_within_radius(
                -33.87, 151.21, 5, filters=SearchFilters(min_price=500)
            )
            assert [item.listing.id for item in page.items] == [2]
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    @pytest.mark.parametrize("lat,lng,radius", [
        (-33.87, 151.21, 0),
        (-33.87, 151.21, -1),
        (-33.87, 151.21, 101),
        (91.0, 151.21, 5),
        (-33.87, 181.0, 5),
        (float("nan"), 151.21, 5),
    ])
    async def test_invalid_arguments_never_reach_store(self, lat, lng, radius):
        test_name = "test_invalid_arguments_never_reach_store"
        print_test_name(test_name)
        try:
            store = MagicMock()
            store.scan = AsyncMock()
            service = GeoSearchService(store=store)
            with pytest.raises(InvalidArgumentError):
                await service.search_within_radius(lat, lng, radius)
            store.scan.assert_not_called()
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_inverted_filter_range_rejected(self, geo_service):
        test_name = "test_inverted_filter_range_rejected"
        print_test_name(test_name)
        try:
            with pytest.raises(InvalidArgumentError):
                await geo_service.search_within_radius(
                    -33.87, 151.21, 5, filters=SearchFilters(min_price=900, max_price=100)
                )
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_pagination_window(self):
        test_name = "test_pagination_window"
        print_test_name(test_name)
        try:
            listings = [make_listing(i, latitude=-33.87 + i * 0.001, longitude=151.21) for i in range(1, 11)]
            service = GeoSearchService(store=InMemoryListingStore(listings))
            first = await service.search_within_radius(-33.87, 151.21, 5, page=PageRequest.of(0, 4))
            second = await service.search_within_radius(-33.87, 151.21, 5, page=PageRequest.of(1, 4))
            assert [i.listing.id for i in first.items] == [1, 2, 3, 4]
            assert [i.listing.id for i in second.items] == [5, 6, 7, 8]
            assert first.total == second.total == 10
            assert second.offset == 4
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e


@pytest.mark.asyncio
class TestBoundsSearch:
    """Tests pour la recherche par viewport."""

    async def test_bounds_inclusive_and_annotated_from_center(self, geo_service):
        test_name = "test_bounds_inclusive_and_annotated_from_center"
        print_test_name(test_name)
        try:
            bounds = Bounds(north=-33.87, south=-33.88, east=151.22, west=151.21)
            page = await geo_service.search_within_bounds(bounds)
            assert sorted(item.listing.id for item in page.items) == [1, 2]
            for item in page.items:
                assert item.distance_km > 0
                assert 0 <= item.bearing_degrees < 360
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    @pytest.mark.parametrize("bounds", [
        Bounds(north=-34.0, south=-33.0, east=152.0, west=151.0),
        Bounds(north=-33.0, south=-34.0, east=-179.0, west=179.0),
    ])
    async def test_inverted_bounds_rejected(self, geo_service, bounds):
        test_name = "test_inverted_bounds_rejected"
        print_test_name(test_name)
        try:
            with pytest.raises(InvalidArgumentError):
                await geo_service.search_within_bounds(bounds)
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e


@pytest.mark.asyncio
class TestNearest:
    """Tests pour la recherche des plus proches voisins."""

    async def test_nearest_ordered_and_truncated(self, geo_service):
        test_name = "test_nearest_ordered_and_truncated"
        print_test_name(test_name)
        try:
            results = await geo_service.find_nearest(-33.875, 151.215, 1)
            assert len(results) == 1
            all_results = await geo_service.find_nearest(-33.875, 151.215, 10)
            # l'annonce à ~130 km est hors de la zone de 50 km
            assert {r.listing.id for r in all_results} == {1, 2}
            distances = [r.distance_km for r in all_results]
            assert distances == sorted(distances)
            assert results[0].distance_km == all_results[0].distance_km
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_nearest_caps_scan(self):
        test_name = "test_nearest_caps_scan"
        print_test_name(test_name)
        try:
            listings = [make_listing(i, latitude=10.0 + i * 0.0001, longitude=10.0) for i in range(1, 8)]
            service = GeoSearchService(store=InMemoryListingStore(listings), max_scan_rows=5)
            with pytest.raises(ResultSetTooLargeError) as exc_info:
                await service.find_nearest(10.0, 10.0, 3)
            assert exc_info.value.total == 7
            assert exc_info.value.cap == 5
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    @pytest.mark.parametrize("limit", [0, -3, 51])
    async def test_invalid_limit(self, geo_service, limit):
        test_name = "test_invalid_limit"
        print_test_name(test_name)
        try:
            with pytest.raises(InvalidArgumentError):
                await geo_service.find_nearest(-33.87, 151.21, limit)
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e


@pytest.mark.asyncio
class TestSimilar:
    """Tests pour les annonces similaires."""

    async def test_similar_scenario(self):
        test_name = "test_similar_scenario"
        print_test_name(test_name)
        try:
            store = InMemoryListingStore([
                make_listing(1, monthly_rent=500.0, area=50.0, district="Newtown"),
                make_listing(2, monthly_rent=450.0, area=48.0, district="Newtown"),
                make_listing(3, monthly_rent=800.0, area=50.0, district="Newtown"),
                make_listing(4, monthly_rent=520.0, area=52.0, district="Glebe"),
            ])
            results = await GeoSearchService(store=store).find_similar(1, 10)
            assert [l.id for l in results] == [2]
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_missing_reference_returns_empty(self, geo_service):
        test_name = "test_missing_reference_returns_empty"
        print_test_name(test_name)
        try:
            assert await geo_service.find_similar(999, 5) == []
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e


@pytest.mark.asyncio
class TestClusters:
    """Tests pour le clustering du viewport."""

    async def test_clusters_cover_viewport(self, geo_service):
        test_name = "test_clusters_cover_viewport"
        print_test_name(test_name)
        try:
            bounds = Bounds(north=-33.0, south=-35.0, east=152.0, west=150.0)
            clusters = await geo_service.get_clusters(bounds, 10)
            assert sum(c.count for c in clusters) == 3
            ids = sorted(i for c in clusters for i in c.listing_ids)
            assert ids == [1, 2, 3]
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    @pytest.mark.parametrize("zoom", [0, 21])
    async def test_zoom_out_of_range(self, geo_service, zoom):
        test_name = "test_zoom_out_of_range"
        print_test_name(test_name)
        try:
            bounds = Bounds(north=-33.0, south=-35.0, east=152.0, west=150.0)
            with pytest.raises(InvalidArgumentError):
                await geo_service.get_clusters(bounds, zoom)
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_clusters_cap(self, sydney_listings):
        test_name = "test_clusters_cap"
        print_test_name(test_name)
        try:
            service = GeoSearchService(store=InMemoryListingStore(sydney_listings), max_scan_rows=2)
            bounds = Bounds(north=-33.0, south=-35.0, east=152.0, west=150.0)
            with pytest.raises(ResultSetTooLargeError):
                await service.get_clusters(bounds, 10)
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e


@pytest.mark.asyncio
class TestCriteriaAndCombined:
    """Tests pour la recherche par critères et la recherche combinée."""

    async def test_criteria_status_override(self):
        test_name = "test_criteria_status_override"
        print_test_name(test_name)
        try:
            store = InMemoryListingStore([
                make_listing(1),
                make_listing(2, status=ListingStatus.RENTED),
            ])
            service = GeoSearchService(store=store)
            default = await service.search_by_criteria(SearchFilters())
            assert [i.listing.id for i in default.items] == [1]
            assert default.items[0].distance_km == 0.0
            rented = await service.search_by_criteria(SearchFilters(status=ListingStatus.RENTED))
            assert [i.listing.id for i in rented.items] == [2]
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_criteria_with_location(self, geo_service):
        test_name = "test_criteria_with_location"
        print_test_name(test_name)
        try:
            filters = SearchFilters(latitude=-33.87, longitude=151.21, radius_km=5, sort_by="distance")
            page = await geo_service.search_by_criteria(filters)
            assert [i.listing.id for i in page.items] == [1, 2]
            assert page.total == 2
            assert 1.2 < page.items[1].distance_km < 1.6
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_geographic_rejects_both_or_neither(self, geo_service):
        test_name = "test_geographic_rejects_both_or_neither"
        print_test_name(test_name)
        try:
            both = GeographicSearchRequest(
                latitude=-33.87, longitude=151.21, radius_km=5,
                north=-33.0, south=-34.0, east=152.0, west=151.0,
            )
            with pytest.raises(InvalidArgumentError):
                await geo_service.perform_geographic_search(both)
            with pytest.raises(InvalidArgumentError):
                await geo_service.perform_geographic_search(GeographicSearchRequest())
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_geographic_dispatches(self, geo_service):
        test_name = "test_geographic_dispatches"
        print_test_name(test_name)
        try:
            radius = await geo_service.perform_geographic_search(
                GeographicSearchRequest(latitude=-33.87, longitude=151.21, radius_km=5)
            )
            assert [i.listing.id for i in radius.items] == [1, 2]
            bounds = await geo_service.perform_geographic_search(
                GeographicSearchRequest(north=-34.0, south=-35.0, east=151.0, west=150.0)
            )
            assert [i.listing.id for i in bounds.items] == [3]
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_calculate_distance(self, geo_service):
        test_name = "test_calculate_distance"
        print_test_name(test_name)
        try:
            result = geo_service.calculate_distance(0.0, 0.0, 0.0, 1.0)
            assert result.bearing_degrees == pytest.approx(90.0)
            assert result.distance_km == pytest.approx(111.195, abs=0.01)
            with pytest.raises(InvalidArgumentError):
                geo_service.calculate_distance(95.0, 0.0, 0.0, 0.0)
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e


@pytest.mark.asyncio
class TestDeadline:
    """Tests pour le délai maximal d'une recherche."""

    async def test_slow_store_times_out(self):
        test_name = "test_slow_store_times_out"
        print_test_name(test_name)
        try:
            async def slow_scan(*_args, **_kwargs):
                await asyncio.sleep(1)
                return [], 0

            store = MagicMock()
            store.scan = slow_scan
            service = GeoSearchService(store=store)
            with pytest.raises(asyncio.TimeoutError):
                await service.search_within_radius(-33.87, 151.21, 5, timeout=0.01)
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e


@pytest.mark.asyncio
class TestMissingCoordinates:
    """Une annonce sans coordonnées n'apparaît dans aucune recherche géographique."""

    async def test_null_coordinates_excluded_everywhere(self):
        test_name = "test_null_coordinates_excluded_everywhere"
        print_test_name(test_name)
        try:
            store = InMemoryListingStore([
                make_listing(1, latitude=-33.87, longitude=151.21),
                make_listing(2, latitude=None, longitude=151.21),
                make_listing(3, latitude=-33.87, longitude=None),
            ])
            service = GeoSearchService(store=store)
            bounds = Bounds(north=-33.0, south=-35.0, east=152.0, west=150.0)

            radius = await service.search_within_radius(-33.87, 151.21, 10)
            viewport = await service.search_within_bounds(bounds)
            nearest = await service.find_nearest(-33.87, 151.21, 10)
            clusters = await service.get_clusters(bounds, 12)

            assert [i.listing.id for i in radius.items] == [1]
            assert [i.listing.id for i in viewport.items] == [1]
            assert [r.listing.id for r in nearest] == [1]
            assert [c.listing_ids for c in clusters] == [[1]]
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e


@pytest.mark.asyncio
class TestReferenceScenarios:
    """Scénarios de référence : recherche par rayon à Sydney et annonces similaires sans quartier."""

    async def test_radius_five_km_around_sydney(self):
        test_name = "test_radius_five_km_around_sydney"
        print_test_name(test_name)
        try:
            store = InMemoryListingStore([
                make_listing(1, latitude=-33.87, longitude=151.21, monthly_rent=500.0),
                make_listing(2, latitude=-33.88, longitude=151.22, monthly_rent=520.0),
                make_listing(3, latitude=-34.50, longitude=150.00, monthly_rent=300.0),
            ])
            page = await GeoSearchService(store=store).search_within_radius(-33.87, 151.21, 5)

            assert [item.listing.id for item in page.items] == [1, 2]
            assert page.items[0].distance_km == pytest.approx(0.0, abs=1e-6)
            assert 1.2 < page.items[1].distance_km < 1.6
            assert all(item.listing.id != 3 for item in page.items)
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_similar_without_district_uses_city_and_price_band(self):
        test_name = "test_similar_without_district_uses_city_and_price_band"
        print_test_name(test_name)
        try:
            store = InMemoryListingStore([
                make_listing(1, monthly_rent=500.0, area=None, district=None, city="Sydney"),
                make_listing(2, monthly_rent=350.0, area=None, city="Sydney"),
                make_listing(3, monthly_rent=650.0, area=None, city="Sydney"),
                make_listing(4, monthly_rent=349.0, area=None, city="Sydney"),
                make_listing(5, monthly_rent=651.0, area=None, city="Sydney"),
                make_listing(6, monthly_rent=500.0, area=None, city="Melbourne"),
                make_listing(7, monthly_rent=480.0, area=None, city="Sydney"),
            ])
            results = await GeoSearchService(store=store).find_similar(1, 10)

            assert sorted(l.id for l in results) == [2, 3, 7]
            for listing in results:
                assert 350.0 <= listing.monthly_rent <= 650.0
                assert listing.city == "Sydney"
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e

    async def test_similar_area_band_edges_included(self):
        test_name = "test_similar_area_band_edges_included"
        print_test_name(test_name)
        try:
            store = InMemoryListingStore([
                make_listing(1, area=24.0),
                make_listing(2, area=28.8),
                make_listing(3, area=19.2),
            ])
            results = await GeoSearchService(store=store).find_similar(1, 10)
            assert sorted(l.id for l in results) == [2, 3]
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e


@pytest.mark.asyncio
class TestAntimeridian:
    """Une boîte de rayon qui déborde de ±180 est repliée de l'autre côté."""

    async def test_radius_search_crosses_antimeridian(self):
        test_name = "test_radius_search_crosses_antimeridian"
        print_test_name(test_name)
        try:
            store = InMemoryListingStore([
                make_listing(1, latitude=0.0, longitude=179.97),
                make_listing(2, latitude=0.0, longitude=-179.98),
                make_listing(3, latitude=0.0, longitude=-179.0),
            ])
            service = GeoSearchService(store=store)

            page = await service.search_within_radius(0.0, 179.95, 10)
            assert [item.listing.id for item in page.items] == [1, 2]
            assert page.items[1].distance_km < 10

            nearest = await service.find_nearest(0.0, 179.95, 5)
            # la troisième annonce est à ~117 km, hors de la zone de 50 km
            assert [r.listing.id for r in nearest] == [1, 2]
            print_test_result(test_name, passed=True)
        except Exception as e:
            print_test_result(test_name, passed=False)
            raise e
