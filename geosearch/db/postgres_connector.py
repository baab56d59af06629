"""PostgreSQL database connector."""
from typing import List, Dict, Any, Optional
import asyncpg

from geosearch.logger import logger


class PostgresConnector:
    """Gère un pool de connexions asynchrone à PostgreSQL en utilisant l'URL."""

    def __init__(self, database_url: str, max_size: int = 10):
        self.database_url = database_url
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Initialise le pool de connexions avec l'URL et max_size."""
        self._pool = await asyncpg.create_pool(
            dsn=self.database_url,
            max_size=self.max_size
        )
        logger.info("Pool de connexions asyncpg initialisé (max_size={}).", self.max_size)

    async def execute_query(
            self,
            sql: str,
            *args,
            timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        """Exécute une requête SQL avec des paramètres variables."""
        if not self._pool:
            raise ConnectionError("Connection pool not initialized. Call .connect() first.")

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql, *args, timeout=timeout)
            return [dict(row) for row in rows]

    async def fetch_value(self, sql: str, *args, timeout: Optional[float] = None) -> Any:
        """Exécute une requête et renvoie la première colonne de la première ligne."""
        if not self._pool:
            raise ConnectionError("Connection pool not initialized. Call .connect() first.")

        async with self._pool.acquire() as conn:
            return await conn.fetchval(sql, *args, timeout=timeout)

    async def close(self):
        """Ferme le pool de connexions proprement."""
        if self._pool:
            await self._pool.close()
            self._pool = None
