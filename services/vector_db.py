"""
Similarity search backends.

Both backends rank catalog products by cosine similarity to a query
embedding and return SearchMatch rows:

    rpc       Supabase / PostgREST RPC (match_products)
    pgvector  the same query issued directly with psycopg2

Any failure is raised as SearchError; the aggregator decides what to do.
"""

import asyncio
import json
import re
from typing import Any, Dict, List, Optional

import aiohttp
import numpy as np
import psycopg2
from psycopg2.extras import RealDictCursor
from loguru import logger

from core.errors import SearchError
from core.models import SearchMatch


IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def clean_label(label: str) -> str:
    return re.sub(r"['\"]", "", label or "").strip()


def rows_to_matches(
    rows: List[Dict[str, Any]],
    threshold: float,
    limit: int,
) -> List[SearchMatch]:
    """Threshold, sort (best first) and cap rows coming back from the operator."""
    matches = []
    for row in rows:
        try:
            similarity = float(row["similarity"])
            product_id = row["id"]
        except (KeyError, TypeError, ValueError):
            logger.debug(f"Skipping malformed search row: {row!r}")
            continue

        if similarity < threshold:
            continue

        matches.append(SearchMatch(
            product_id=str(product_id),
            name=row.get("name") or "",
            price=_parse_price(row.get("price")),
            similarity=similarity,
        ))

    matches.sort(key=lambda m: m.similarity, reverse=True)
    return matches[:limit]


def _parse_price(value: Any) -> Optional[float]:
    """Unparseable prices become None; the match itself is kept."""
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unparseable price: {value!r}")
        return None


class SearchBackend:
    """Interface: one similarity query per embedding."""

    def __init__(self, threshold: float = 0.6, match_count: int = 50, filter_by_label: bool = False):
        self.threshold = threshold
        self.match_count = match_count
        self.filter_by_label = filter_by_label

    async def match(self, embedding: np.ndarray, label: str = "") -> List[SearchMatch]:
        raise NotImplementedError


class SupabaseRpcSearch(SearchBackend):
    """POST {SUPABASE_URL}/rest/v1/rpc/{function}."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        api_key: str,
        function_name: str = "match_products",
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.session = session
        self.url = f"{base_url.rstrip('/')}/rest/v1/rpc/{function_name}"
        self.api_key = api_key

    def build_payload(self, embedding: np.ndarray, label: str) -> dict:
        payload = {
            "query_embedding": [float(v) for v in embedding],
            "match_threshold": self.threshold,
            "match_count": self.match_count,
        }
        if self.filter_by_label and clean_label(label):
            payload["filter_keyword"] = clean_label(label)
        return payload

    async def match(self, embedding: np.ndarray, label: str = "") -> List[SearchMatch]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with self.session.post(
                self.url, json=self.build_payload(embedding, label), headers=headers
            ) as response:
                status = response.status
                body = await response.text()
        except aiohttp.ClientError as e:
            raise SearchError(f"Vector search RPC unreachable: {e}")

        if status != 200:
            raise SearchError(f"Vector search RPC error ({status}): {body[:300]}")

        try:
            rows = json.loads(body) if body else []
        except json.JSONDecodeError:
            raise SearchError("Vector search RPC returned a non-JSON body")

        if not isinstance(rows, list):
            raise SearchError(f"Vector search RPC returned {type(rows).__name__}, expected a list")

        return rows_to_matches(rows, self.threshold, self.match_count)


class PgVectorSearch(SearchBackend):
    """
    Cosine ranking straight against the products table (pgvector `<=>`).

    psycopg2 is blocking, so every query runs in a worker thread on its own
    short-lived connection.
    """

    def __init__(
        self,
        dsn: str,
        table: str = "products",
        embedding_column: str = "image_embedding",
        connect_timeout: int = 10,
        **kwargs,
    ):
        super().__init__(**kwargs)
        for identifier in (table, embedding_column):
            if not IDENTIFIER_PATTERN.match(identifier):
                raise ValueError(f"Invalid SQL identifier: {identifier!r}")

        self.dsn = dsn
        self.table = table
        self.embedding_column = embedding_column
        self.connect_timeout = connect_timeout

    def build_query(self, embedding: np.ndarray, keyword: str = ""):
        vector = "[" + ",".join(str(float(v)) for v in embedding) + "]"
        col = f'"{self.embedding_column}"'

        sql = f"""
            SELECT
                id,
                name,
                price,
                1 - ({col} <=> %s::vector) AS similarity
            FROM "{self.table}"
            WHERE {col} IS NOT NULL
              AND 1 - ({col} <=> %s::vector) >= %s
        """
        params = [vector, vector, self.threshold]

        if keyword:
            sql += " AND name ILIKE %s"
            params.append(f"%{keyword}%")

        sql += f" ORDER BY {col} <=> %s::vector LIMIT %s;"
        params.extend([vector, self.match_count])
        return sql, params

    def _fetch(self, sql: str, params: list) -> List[Dict[str, Any]]:
        conn = psycopg2.connect(
            self.dsn,
            cursor_factory=RealDictCursor,
            connect_timeout=self.connect_timeout,
        )
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            return [dict(row) for row in cur.fetchall()]
        finally:
            conn.close()

    async def match(self, embedding: np.ndarray, label: str = "") -> List[SearchMatch]:
        keyword = clean_label(label) if self.filter_by_label else ""
        sql, params = self.build_query(embedding, keyword)

        try:
            rows = await asyncio.to_thread(self._fetch, sql, params)
        except psycopg2.OperationalError as e:
            raise SearchError(f"Vector DB unreachable: {e}")
        except psycopg2.Error as e:
            raise SearchError(f"Vector search query failed: {e}")

        return rows_to_matches(rows, self.threshold, self.match_count)


def create_search_backend(settings, session: aiohttp.ClientSession) -> SearchBackend:
    common = {
        "threshold": settings.SEARCH_MATCH_THRESHOLD,
        "match_count": settings.SEARCH_MATCH_COUNT,
        "filter_by_label": settings.SEARCH_FILTER_BY_LABEL,
    }

    if settings.SEARCH_PROVIDER == "pgvector":
        if not settings.DB_CONNECTION_STRING:
            raise ValueError("pgvector search needs DB_CONNECTION_STRING")
        return PgVectorSearch(
            settings.DB_CONNECTION_STRING,
            table=settings.SEARCH_TABLE,
            embedding_column=settings.SEARCH_EMBEDDING_COLUMN,
            connect_timeout=max(1, int(settings.SEARCH_TIMEOUT)),
            **common,
        )

    if settings.SEARCH_PROVIDER != "rpc":
        raise ValueError(f"Unknown SEARCH_PROVIDER: {settings.SEARCH_PROVIDER}")

    return SupabaseRpcSearch(
        session,
        base_url=settings.SUPABASE_URL,
        api_key=settings.SUPABASE_SERVICE_ROLE_KEY,
        function_name=settings.SEARCH_RPC_NAME,
        **common,
    )
