"""
External catalog clients.

Each client turns a ``CatalogQuery`` into a list of ``CandidateItem``s,
paging through the upstream API and throttling between pages.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ..core.config import settings
from ..core.exceptions import CatalogError, IngestionError
from ..core.logging import logger
from ..models.catalog import CandidateItem, CatalogQuery, ReviewCategory, SortBy
from ..utils.content_utils import display_name, generate_slug
from ..utils.retry import retry_async

IGDB_GAME_FIELDS = (
    "name, id, cover.url, genres.name, first_release_date, summary, "
    "involved_companies.company.name, involved_companies.developer, "
    "involved_companies.publisher, platforms.name, game_modes.name, "
    "aggregated_rating, rating, total_rating_count"
)

IGDB_SORT_FIELDS = {
    SortBy.POPULARITY: "total_rating_count",
    SortBy.RATING: "rating",
    SortBy.RELEASE_DATE: "first_release_date",
    SortBy.NAME: "name",
}

TMDB_PAGE_SIZE = 20

# Max consecutive HTTP 429 waits for a single page before giving up
MAX_RATE_LIMIT_WAITS = 5


class RateLimitedError(Exception):
    """Upstream answered HTTP 429."""


class UpstreamServerError(Exception):
    """Upstream answered with a 5xx status."""


def _raise_for_status(response: httpx.Response):
    if response.status_code == 429:
        raise RateLimitedError(f"Rate limited by {response.request.url.host}")
    if response.status_code >= 500:
        raise UpstreamServerError(
            f"{response.request.url.host} returned {response.status_code}"
        )
    response.raise_for_status()


class CatalogClient(ABC):
    """Base class for catalog clients."""

    name: str = "catalog"

    @abstractmethod
    async def fetch_candidates(self, query: CatalogQuery) -> List[CandidateItem]:
        """Fetch up to ``query.limit`` candidate items."""


class HTTPCatalogClient(CatalogClient):
    """Shared plumbing for catalogs reached over HTTP."""

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        request_delay_ms: int = 0,
    ):
        self.transport = transport
        self.sleep = sleep
        self.request_delay_ms = request_delay_ms
        self.rate_limit_wait_ms = settings.CATALOG_RATE_LIMIT_WAIT_MS

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self.transport, timeout=settings.CATALOG_HTTP_TIMEOUT
        )

    async def _with_rate_limit(self, fetch_page: Callable[[], Awaitable[Any]]) -> Any:
        """Call ``fetch_page``, waiting and repeating it on HTTP 429."""
        waits = 0
        while True:
            try:
                return await fetch_page()
            except RateLimitedError:
                waits += 1
                if waits > MAX_RATE_LIMIT_WAITS:
                    raise
                logger.warning(
                    f"{self.name} rate limit hit, waiting {self.rate_limit_wait_ms} ms"
                )
                await self.sleep(self.rate_limit_wait_ms / 1000)

    async def _throttle(self):
        if self.request_delay_ms > 0:
            await self.sleep(self.request_delay_ms / 1000)


class IGDBCatalogClient(HTTPCatalogClient):
    """IGDB games catalog (Twitch client-credentials auth, Apicalypse queries)."""

    name = "IGDB"

    def __init__(
        self,
        client_id: str = None,
        client_secret: str = None,
        base_url: str = None,
        token_url: str = None,
        page_size: int = None,
        **kwargs,
    ):
        kwargs.setdefault("request_delay_ms", settings.IGDB_REQUEST_DELAY_MS)
        super().__init__(**kwargs)
        self.client_id = client_id or settings.IGDB_CLIENT_ID
        self.client_secret = client_secret or settings.IGDB_CLIENT_SECRET
        self.base_url = (base_url or settings.IGDB_BASE_URL).rstrip("/")
        self.token_url = token_url or settings.IGDB_TOKEN_URL
        self.page_size = page_size or settings.IGDB_PAGE_SIZE
        self._access_token: Optional[str] = None
        self._token_expiry: float = 0.0

    @retry_async(max_attempts=3, retry_exceptions=(httpx.TransportError, UpstreamServerError))
    async def _request_token(self, client: httpx.AsyncClient) -> Dict[str, Any]:
        response = await client.post(
            self.token_url,
            params={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
            },
        )
        _raise_for_status(response)
        return response.json()

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        if self._access_token and time.monotonic() < self._token_expiry:
            return self._access_token

        payload = await self._request_token(client)
        self._access_token = payload["access_token"]
        # Refresh a minute before the token actually expires
        self._token_expiry = time.monotonic() + int(payload.get("expires_in", 0)) - 60
        return self._access_token

    def build_query(self, query: CatalogQuery, limit: int, offset: int) -> str:
        """Build the Apicalypse body for one page of games."""
        conditions = []
        if query.genre_id is not None:
            conditions.append(f"genres = {query.genre_id}")
        if query.platform_id is not None:
            conditions.append(f"platforms = {query.platform_id}")
        if query.release_year:
            start = int(datetime(query.release_year, 1, 1, tzinfo=timezone.utc).timestamp())
            end = int(
                datetime(query.release_year, 12, 31, 23, 59, 59, tzinfo=timezone.utc).timestamp()
            )
            conditions.append(f"first_release_date >= {start} & first_release_date <= {end}")
        if query.min_rating is not None:
            conditions.append(f"rating >= {int(query.min_rating)}")
        conditions.append("cover != null")
        conditions.append("summary != null")

        parts = [
            f"fields {IGDB_GAME_FIELDS};",
            f"where {' & '.join(conditions)};",
            f"sort {IGDB_SORT_FIELDS[query.sort_by]} {query.order.value};",
            f"limit {limit};",
            f"offset {offset};",
        ]
        return " ".join(parts)

    @retry_async(max_attempts=3, retry_exceptions=(httpx.TransportError, UpstreamServerError))
    async def _fetch_page(
        self, client: httpx.AsyncClient, body: str
    ) -> List[Dict[str, Any]]:
        token = await self._get_access_token(client)
        response = await client.post(
            f"{self.base_url}/games",
            content=body,
            headers={
                "Client-ID": self.client_id,
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            },
        )
        _raise_for_status(response)
        return response.json()

    async def fetch_candidates(self, query: CatalogQuery) -> List[CandidateItem]:
        if not self.client_id or not self.client_secret:
            raise CatalogError(self.name, "IGDB credentials are not configured")

        games: List[Dict[str, Any]] = []
        seen = set()
        offset = 0
        requests = 0

        async with self._client() as client:
            while len(games) < query.limit:
                page_limit = min(self.page_size, query.limit - len(games))
                body = self.build_query(query, page_limit, offset)
                requests += 1
                logger.debug(f"IGDB request {requests}: limit={page_limit} offset={offset}")

                page = await self._with_rate_limit(lambda: self._fetch_page(client, body))
                if not page:
                    break

                # Offset paging over a live sort can repeat a game across pages
                for game in page:
                    if game["id"] not in seen:
                        seen.add(game["id"])
                        games.append(game)
                if len(page) < page_limit:
                    break

                offset += len(page)
                if len(games) < query.limit:
                    await self._throttle()

        logger.info(f"IGDB fetch complete: {len(games)} games in {requests} request(s)")
        return [
            CandidateItem(
                native_id=game["id"],
                display_name=display_name(game),
                category=ReviewCategory.GAME,
                data=game,
            )
            for game in games[: query.limit]
        ]


class TMDBCatalogClient(HTTPCatalogClient):
    """TMDB discover endpoint for movies (``movie``) or series (``tv``)."""

    name = "TMDB"

    def __init__(
        self,
        media: str = "movie",
        api_key: str = None,
        base_url: str = None,
        language: str = None,
        max_pages: int = None,
        min_vote_count: int = None,
        **kwargs,
    ):
        if media not in ("movie", "tv"):
            raise ValueError(f"Unsupported TMDB media type: {media}")
        kwargs.setdefault("request_delay_ms", settings.TMDB_REQUEST_DELAY_MS)
        super().__init__(**kwargs)
        self.media = media
        self.category = ReviewCategory.MOVIE if media == "movie" else ReviewCategory.SERIES
        self.api_key = api_key or settings.TMDB_API_KEY
        self.base_url = (base_url or settings.TMDB_BASE_URL).rstrip("/")
        self.language = language or settings.TMDB_LANGUAGE
        self.max_pages = max_pages or settings.TMDB_MAX_PAGES
        self.min_vote_count = (
            min_vote_count if min_vote_count is not None else settings.TMDB_MIN_VOTE_COUNT
        )

    def sort_param(self, query: CatalogQuery) -> str:
        if query.sort_by == SortBy.RATING:
            field = "vote_average"
        elif query.sort_by == SortBy.RELEASE_DATE:
            field = "primary_release_date" if self.media == "movie" else "first_air_date"
        elif query.sort_by == SortBy.NAME:
            field = "title" if self.media == "movie" else "name"
        else:
            field = "popularity"
        return f"{field}.{query.order.value}"

    def build_params(self, query: CatalogQuery, page: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "api_key": self.api_key,
            "language": self.language,
            "page": page,
            "vote_count.gte": self.min_vote_count,
            "sort_by": self.sort_param(query),
        }
        if query.genre_id is not None:
            params["with_genres"] = query.genre_id
        if query.release_year:
            year_param = "primary_release_year" if self.media == "movie" else "first_air_date_year"
            params[year_param] = query.release_year
        if query.min_rating is not None:
            params["vote_average.gte"] = query.min_rating
        return params

    @retry_async(max_attempts=3, retry_exceptions=(httpx.TransportError, UpstreamServerError))
    async def _fetch_page(
        self, client: httpx.AsyncClient, params: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        response = await client.get(f"{self.base_url}/discover/{self.media}", params=params)
        _raise_for_status(response)
        return response.json().get("results") or []

    async def fetch_candidates(self, query: CatalogQuery) -> List[CandidateItem]:
        if not self.api_key:
            raise CatalogError(self.name, "TMDB API key is not configured")

        records: List[Dict[str, Any]] = []
        seen = set()
        page = 1

        async with self._client() as client:
            while len(records) < query.limit and page <= self.max_pages:
                params = self.build_params(query, page)
                results = await self._with_rate_limit(lambda: self._fetch_page(client, params))
                if not results:
                    break

                for record in results:
                    # Entries without overview or poster make poor review subjects
                    if not record.get("overview") or not record.get("poster_path"):
                        continue
                    if record["id"] in seen:
                        continue
                    seen.add(record["id"])
                    records.append(record)

                logger.debug(
                    f"TMDB {self.media} page {page}: {len(results)} results "
                    f"(total {len(records)}/{query.limit})"
                )

                if len(results) < TMDB_PAGE_SIZE:
                    break

                page += 1
                if len(records) < query.limit:
                    await self._throttle()

        logger.info(f"TMDB {self.media} fetch complete: {len(records)} items from {page} page(s)")
        return [
            CandidateItem(
                native_id=record["id"],
                display_name=display_name(record),
                category=self.category,
                data=record,
            )
            for record in records[: query.limit]
        ]


class StaticCatalogClient(CatalogClient):
    """Candidates supplied by name in the request (hardware, products)."""

    name = "static"

    def __init__(self, category: ReviewCategory):
        self.category = category

    async def fetch_candidates(self, query: CatalogQuery) -> List[CandidateItem]:
        items: List[CandidateItem] = []
        seen = set()
        for raw_name in query.names:
            item_name = raw_name.strip()
            slug = generate_slug(item_name)
            if not slug or slug in seen:
                continue
            seen.add(slug)
            items.append(
                CandidateItem(
                    native_id=slug,
                    display_name=item_name,
                    category=self.category,
                    data={"name": item_name},
                )
            )
        return items[: query.limit]


class CatalogService:
    """Dispatches candidate fetches to the client for a review category."""

    def __init__(self, clients: Optional[Dict[ReviewCategory, CatalogClient]] = None):
        if clients is None:
            clients = {
                ReviewCategory.GAME: IGDBCatalogClient(),
                ReviewCategory.MOVIE: TMDBCatalogClient(media="movie"),
                ReviewCategory.SERIES: TMDBCatalogClient(media="tv"),
                ReviewCategory.HARDWARE: StaticCatalogClient(ReviewCategory.HARDWARE),
                ReviewCategory.PRODUCT: StaticCatalogClient(ReviewCategory.PRODUCT),
            }
        self.clients = clients

    async def fetch_candidates(
        self, category: ReviewCategory, query: CatalogQuery
    ) -> List[CandidateItem]:
        """
        Fetch candidate items for ``category``.

        Raises:
            CatalogError: If the catalog is unknown, unreachable or rejects the query
        """
        client = self.clients.get(category)
        if client is None:
            raise CatalogError(category.value, "No catalog configured for this category")

        try:
            return await client.fetch_candidates(query)
        except IngestionError:
            raise
        except httpx.HTTPStatusError as e:
            raise CatalogError(
                client.name, f"HTTP {e.response.status_code} from {e.request.url.host}"
            ) from e
        except Exception as e:
            logger.error(f"{client.name} catalog fetch failed: {e}", exc_info=True)
            raise CatalogError(client.name, str(e)) from e


# Singleton instance
_catalog_service_instance: Optional[CatalogService] = None


def get_catalog_service() -> CatalogService:
    """Get or create the singleton CatalogService instance."""
    global _catalog_service_instance
    if _catalog_service_instance is None:
        _catalog_service_instance = CatalogService()
    return _catalog_service_instance
