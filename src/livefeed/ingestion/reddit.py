import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from livefeed.core.errors import SourceFetchError
from livefeed.ingestion.base import RawItem, SourceAdapter, SortType

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "livefeed/1.0"
MAX_LIMIT = 100


class RedditAdapter(SourceAdapter):
    name = "reddit"

    def __init__(
        self,
        user_agent: Optional[str] = None,
        timeout: float = 30.0,
        base_url: str = "https://www.reddit.com",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._client = client

    def _listing_url(self, origin: str, sort: SortType, limit: int) -> str:
        url = f"{self.base_url}/r/{origin}/{sort}.json?limit={limit}&raw_json=1"
        if sort == "top":
            url += "&t=day"
        return url

    async def fetch(self, origin: str, sort: SortType = "hot", limit: int = 10) -> List[RawItem]:
        limit = max(1, min(limit, MAX_LIMIT))
        url = self._listing_url(origin, sort, limit)
        headers = {"User-Agent": self.user_agent}

        try:
            if self._client is not None:
                resp = await self._client.get(url, headers=headers)
                resp.raise_for_status()
                payload = resp.json()
            else:
                async with httpx.AsyncClient(timeout=self.timeout, headers=headers) as client:
                    resp = await client.get(url)
                    resp.raise_for_status()
                    payload = resp.json()

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise SourceFetchError(
                origin,
                f"HTTP {status}",
                rate_limited=status == 429,
                status_code=status,
            ) from e
        except httpx.HTTPError as e:
            raise SourceFetchError(origin, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise SourceFetchError(origin, "response is not valid JSON") from e

        try:
            children = payload["data"]["children"]
        except (KeyError, TypeError) as e:
            raise SourceFetchError(origin, "unexpected listing format") from e

        items: List[RawItem] = []
        for child in children:
            data = child.get("data") if isinstance(child, dict) else None
            if not data:
                continue
            try:
                items.append(self._to_item(data, origin, sort))
            except (ValidationError, ValueError, TypeError) as e:
                logger.warning(
                    f"Skipping malformed post: {e}",
                    extra={"origin": origin, "stage": "fetch"},
                )

        logger.info(f"Fetched {len(items)} posts from r/{origin}/{sort}", extra={"origin": origin})
        return items

    @staticmethod
    def _to_item(data: Dict[str, Any], origin: str, sort: SortType) -> RawItem:
        created = datetime.fromtimestamp(float(data.get("created_utc", 0)), tz=timezone.utc)
        return RawItem(
            id=data.get("id"),
            title=data.get("title") or "",
            author=data.get("author") or "[deleted]",
            origin=data.get("subreddit") or origin,
            body=data.get("selftext") or "",
            url=data.get("url") or "",
            permalink=f"https://reddit.com{data.get('permalink', '')}",
            score=int(data.get("score") or 0),
            num_comments=int(data.get("num_comments") or 0),
            upvote_ratio=float(data.get("upvote_ratio") if data.get("upvote_ratio") is not None else 0.5),
            created_at=created,
            over_18=bool(data.get("over_18", False)),
            is_video=bool(data.get("is_video", False)),
            domain=data.get("domain") or "",
            sort=sort,
        )
