# LadderClient: async fetcher for the public Showdown ladder JSON.
#
# - `await client.fetch(format_id)` returns the ladder's `toplist` rows, or None when the
#   pull failed. The tracker treats None as "no update this tick".
# - Inject an `aiohttp.ClientSession` for connection reuse in the long-running bot; a
#   private session is opened (and closed) per call otherwise.
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

logger = logging.getLogger(__name__)


class LadderClient:
    BASE_URL = "https://pokemonshowdown.com/ladder"

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout_s: float = 8.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout_s = max(1.0, float(timeout_s))
        self._session = session

    def url_for(self, format_id: str) -> str:
        return f"{self.base_url}/{format_id}.json"

    async def fetch(self, format_id: str) -> Optional[List[Mapping[str, Any]]]:
        if not format_id:
            return None

        owns_session = self._session is None
        session = self._session or aiohttp.ClientSession()
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with session.get(self.url_for(format_id), timeout=timeout) as resp:
                if resp.status != 200:
                    logger.warning("Ladder pull for %s failed: HTTP %s", format_id, resp.status)
                    return None
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError:
            logger.warning("Ladder pull for %s timed out", format_id)
            return None
        except (aiohttp.ClientError, json.JSONDecodeError) as exc:
            logger.warning("Ladder pull for %s failed: %s: %s", format_id, type(exc).__name__, exc)
            return None
        finally:
            if owns_session:
                await session.close()

        return self._toplist(data, format_id)

    @staticmethod
    def _toplist(data: Any, format_id: str) -> Optional[List[Mapping[str, Any]]]:
        toplist = data.get("toplist") if isinstance(data, dict) else None
        if not isinstance(toplist, list):
            logger.warning("Ladder pull for %s returned no toplist", format_id)
            return None
        return [row for row in toplist if isinstance(row, dict)]

    async def __call__(self, format_id: str) -> Optional[List[Dict[str, Any]]]:
        return await self.fetch(format_id)


__all__ = ["LadderClient"]
