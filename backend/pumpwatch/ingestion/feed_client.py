"""
Government sensor feed client (rainfall depth + water level).
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from backend.pumpwatch.core.config import settings
from backend.pumpwatch.core.http import UpstreamClient
from backend.pumpwatch.ingestion.feed_parser import ParsedFeed, parse_feed, unwrap_payload
from backend.pumpwatch.ingestion.models import FeedFamily

logger = logging.getLogger(__name__)


class FeedClient(UpstreamClient):
    """
    Fetches and parses both station feeds.

    Usage:
        client = FeedClient()
        rainfall = await client.fetch(FeedFamily.RAINFALL)
        print(len(rainfall.observations), rainfall.malformed)
    """

    service_name = "sensor-feed"

    def __init__(
        self,
        *,
        rainfall_url: Optional[str] = None,
        water_level_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs,
    ):
        super().__init__(client=client, **kwargs)
        self.urls = {
            FeedFamily.RAINFALL: rainfall_url or settings.RAINFALL_FEED_URL,
            FeedFamily.WATER_LEVEL: water_level_url or settings.WATER_LEVEL_FEED_URL,
        }

    async def fetch(self, family: FeedFamily) -> ParsedFeed:
        """Fetch one feed; raises UpstreamUnavailableError or MalformedRecordError."""
        url = self.urls[family]
        payload = await self.get_json(url)
        parsed = parse_feed(family, unwrap_payload(payload))
        logger.debug(
            "Fetched %s feed: %d stations (%d malformed)",
            family.value, len(parsed.observations), parsed.malformed,
            extra={"family": family.value},
        )
        return parsed
