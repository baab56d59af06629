"""Magasin d'annonces PostgreSQL : compile les prédicats en SQL paramétré."""
import asyncio
import re
from enum import Enum
from typing import Any, List, Optional, Tuple

import asyncpg

from geosearch.config import settings
from geosearch.db.postgres_connector import PostgresConnector
from geosearch.errors import StoreUnavailableError
from geosearch.logger import logger
from geosearch.models import Listing, PageRequest
from geosearch.search.filters import DISTANCE, SortSpec
from geosearch.search.predicates import AnyOf, Clause, Condition, Op, Predicate

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")
_COLUMNS = frozenset(Listing.model_fields)

_COMPARISONS = {
    Op.EQ: "=",
    Op.NE: "<>",
    Op.GE: ">=",
    Op.LE: "<=",
    Op.GT: ">",
    Op.LT: "<",
}

UNAVAILABLE_ERRORS = (
    ConnectionError,
    OSError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
)


def _to_db(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (tuple, list)):
        return [_to_db(v) for v in value]
    return value


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def _gather_or_cancel(*coros) -> List[Any]:
    """asyncio.gather, mais un échec annule les requêtes soeurs encore en cours."""
    tasks = [asyncio.ensure_future(c) for c in coros]
    try:
        return await asyncio.gather(*tasks)
    except Exception:
        for task in tasks:
            task.cancel()
        raise


class SqlCompiler:
    """Traduit un `Predicate` et un `SortSpec` en fragments SQL et paramètres ($1, $2...)."""

    def __init__(self, earth_radius_km: float = settings.EARTH_RADIUS_KM):
        self.earth_radius_km = earth_radius_km
        self.params: List[Any] = []

    def param(self, value: Any, cast: str = "") -> str:
        self.params.append(_to_db(value))
        return f"${len(self.params)}{cast}"

    @staticmethod
    def _column(name: str) -> str:
        if name not in _COLUMNS:
            raise ValueError(f"Unknown listing column: {name}")
        return f'"{name}"'

    def _haversine(self, lat: float, lng: float) -> str:
        lat_p = self.param(lat, "::float8")
        lng_p = self.param(lng, "::float8")
        return (
            f"(2 * {self.earth_radius_km} * asin(sqrt(least(1.0, "
            f'power(sin(radians("latitude" - {lat_p}) / 2), 2) + '
            f'cos(radians({lat_p})) * cos(radians("latitude")) * '
            f'power(sin(radians("longitude" - {lng_p}) / 2), 2)))))'
        )

    def clause(self, clause: Clause) -> str:
        if isinstance(clause, AnyOf):
            return "(" + " OR ".join(self.clause(c) for c in clause.clauses) + ")"
        return self._condition(clause)

    def _condition(self, cond: Condition) -> str:  # pylint: disable=too-many-return-statements
        if cond.op is Op.WITHIN_KM:
            lat, lng, radius_km = cond.value
            distance = self._haversine(lat, lng)
            return f"{distance} <= {self.param(radius_km, '::float8')}"

        column = self._column(cond.field)
        if cond.op in _COMPARISONS:
            return f"{column} {_COMPARISONS[cond.op]} {self.param(cond.value)}"
        if cond.op is Op.IN:
            return f"{column} = ANY({self.param(cond.value)})"
        if cond.op is Op.ICONTAINS:
            pattern = f"%{_escape_like(str(cond.value))}%"
            return f"{column} ILIKE {self.param(pattern)} ESCAPE '\\'"
        if cond.op is Op.SUPERSET:
            return f"{column} @> {self.param(cond.value, '::text[]')}"
        if cond.op is Op.IS_NULL:
            return f"{column} IS NULL"
        if cond.op is Op.NOT_NULL:
            return f"{column} IS NOT NULL"
        if cond.op is Op.LT_FIELD:
            return f"{column} < {self._column(cond.value)}"
        raise ValueError(f"Unsupported operator: {cond.op}")

    def where(self, predicate: Predicate) -> str:
        if not predicate.clauses:
            return "TRUE"
        return " AND ".join(self.clause(c) for c in predicate.clauses)

    def order_by(self, sort: SortSpec) -> str:
        direction = "DESC" if sort.descending else "ASC"
        if sort.field == DISTANCE:
            if sort.point is None:
                raise ValueError("Distance sort requires a reference point")
            expression = self._haversine(sort.point.lat, sort.point.lng)
        else:
            expression = self._column(sort.field)
        return f'{expression} {direction} NULLS LAST, "id" ASC'


class PostgresListingStore:
    """Implémentation asyncpg du contrat `ListingStore`."""

    def __init__(self, db_connector: PostgresConnector, table: str = settings.LISTINGS_TABLE):
        if not _TABLE_NAME.match(table):
            raise ValueError(f"Invalid table name: {table}")
        self.db = db_connector
        self.table = table

    def build_scan_queries(
            self,
            predicate: Predicate,
            sort: SortSpec,
            page: PageRequest) -> Tuple[str, List[Any], str, List[Any]]:
        """Renvoie (sql page, paramètres page, sql total, paramètres total)."""
        unknown = predicate.fields() - _COLUMNS
        if unknown:
            raise ValueError(f"Unknown listing column(s): {', '.join(sorted(unknown))}")

        count_compiler = SqlCompiler()
        count_sql = (
            f"SELECT count(*) FROM {self.table} "
            f"WHERE {count_compiler.where(predicate)}"
        )

        compiler = SqlCompiler()
        where = compiler.where(predicate)
        order = compiler.order_by(sort)
        limit_p = compiler.param(page.limit)
        offset_p = compiler.param(page.offset)
        page_sql = (
            f"SELECT * FROM {self.table} WHERE {where} "
            f"ORDER BY {order} LIMIT {limit_p} OFFSET {offset_p}"
        )
        return page_sql, compiler.params, count_sql, count_compiler.params

    async def scan(
            self,
            predicate: Predicate,
            sort: SortSpec,
            page: PageRequest,
            timeout: Optional[float] = None) -> Tuple[List[Listing], int]:
        page_sql, page_params, count_sql, count_params = self.build_scan_queries(
            predicate, sort, page
        )
        logger.debug("Scan SQL: {sql} | params={params}", sql=page_sql, params=page_params)

        try:
            rows, total = await _gather_or_cancel(
                self.db.execute_query(page_sql, *page_params, timeout=timeout),
                self.db.fetch_value(count_sql, *count_params, timeout=timeout),
            )
        # TimeoutError hérite de OSError depuis Python 3.11
        except asyncio.TimeoutError:
            raise
        except UNAVAILABLE_ERRORS as e:
            logger.error("Listing store unavailable: {error}", error=e)
            raise StoreUnavailableError(str(e)) from e

        return [Listing.model_validate(dict(row)) for row in rows], int(total or 0)

    async def get_by_id(
            self,
            listing_id: int,
            timeout: Optional[float] = None) -> Optional[Listing]:
        sql = f'SELECT * FROM {self.table} WHERE "id" = $1'
        try:
            rows = await self.db.execute_query(sql, listing_id, timeout=timeout)
        except asyncio.TimeoutError:
            raise
        except UNAVAILABLE_ERRORS as e:
            logger.error("Listing store unavailable: {error}", error=e)
            raise StoreUnavailableError(str(e)) from e
        return Listing.model_validate(dict(rows[0])) if rows else None
