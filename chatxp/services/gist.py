"""GitHub Gist fetcher - default ``fetch`` callable for SnapshotCache."""

import json
import logging
from typing import Any

import httpx

from chatxp.core.config import Settings, settings
from chatxp.core.errors import NetworkError

logger = logging.getLogger(__name__)


class GistFetcher:
    """Reads the XP data and achievement catalog files from a single gist."""

    def __init__(self, config: Settings | None = None, client: httpx.AsyncClient | None = None):
        self.config = config or settings
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.config.gist_token:
            headers["Authorization"] = f"Bearer {self.config.gist_token}"
        return headers

    @property
    def url(self) -> str:
        return f"{self.config.gist_api_base.rstrip('/')}/gists/{self.config.gist_id}"

    async def __call__(self) -> dict[str, Any]:
        if not self.config.gist_id:
            raise NetworkError("CHATXP_GIST_ID is not configured")

        gist = await self._get_gist()
        files = gist.get("files") or {}

        xp_file = files.get(self.config.gist_xp_filename)
        if not xp_file:
            raise NetworkError(f"{self.config.gist_xp_filename} not found in gist")
        payload = self._decode(xp_file, self.config.gist_xp_filename)
        if not isinstance(payload, dict):
            raise NetworkError(f"{self.config.gist_xp_filename} is not a JSON object")

        achievements_file = files.get(self.config.gist_achievements_filename)
        if achievements_file:
            payload["achievements"] = self._decode(achievements_file, self.config.gist_achievements_filename)

        return payload

    async def _get_gist(self) -> dict[str, Any]:
        try:
            if self._client is not None:
                response = await self._client.get(self.url, headers=self._headers())
            else:
                async with httpx.AsyncClient(timeout=self.config.http_timeout_seconds) as client:
                    response = await client.get(self.url, headers=self._headers())
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise NetworkError(f"GitHub API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"GitHub API request failed: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise NetworkError("GitHub API returned invalid JSON") from e

    @staticmethod
    def _decode(file: dict[str, Any], filename: str) -> Any:
        try:
            return json.loads(file.get("content") or "")
        except ValueError as e:
            logger.error(f"Failed to parse {filename}: {e}")
            raise NetworkError(f"{filename} is not valid JSON") from e
