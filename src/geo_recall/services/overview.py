"""Per-round location overview from the game API."""

from __future__ import annotations

import httpx

from geo_recall.config import settings
from geo_recall.models import OverviewData, RoundKey
from geo_recall.services.http import JsonService


class LocationOverviewClient(JsonService):
    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            base_url=base_url or settings.game_api_url,
            timeout_seconds=timeout_seconds or settings.geocoder_timeout_seconds,
            client=client,
        )

    async def fetch(self, key: RoundKey) -> OverviewData | None:
        url = f"{self.base_url}/v4/games/{key.session_id}/round/{key.round_number}/location-overview"
        return OverviewData.from_payload(await self._get_json(url))
