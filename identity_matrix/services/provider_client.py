"""
HTTP gateway for a single enrichment provider
"""

from typing import Any, Dict, Optional

import aiohttp
import structlog

from identity_matrix.core.config import ProviderConfig

logger = structlog.get_logger(__name__)


class ProviderClient:
    """Queries one provider's ``/enrich`` endpoint by email"""

    def __init__(self, config: ProviderConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.session = session

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def kind(self) -> str:
        return self.config.kind

    @property
    def priority(self) -> int:
        return self.config.priority

    async def fetch(self, email: str) -> Dict[str, Any]:
        """
        Fetch raw enrichment data for an email address.

        Raises aiohttp.ClientError on HTTP or connection failures and
        asyncio.TimeoutError when the provider's timeout elapses.
        """
        url = f"{self.config.base_url.rstrip('/')}/enrich"
        headers = {
            'Authorization': f'Bearer {self.config.api_key}',
            'Content-Type': 'application/json'
        }
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)

        if self.session is not None:
            return await self._get(self.session, url, email, headers, timeout)
        async with aiohttp.ClientSession() as session:
            return await self._get(session, url, email, headers, timeout)

    async def _get(self, session, url, email, headers, timeout) -> Dict[str, Any]:
        async with session.get(url, params={'email': email}, headers=headers, timeout=timeout) as response:
            if response.status >= 400:
                error_text = await response.text()
                logger.warning("Provider returned error", provider=self.name,
                               status=response.status, body=error_text[:200])
                response.raise_for_status()
            data = await response.json()
            if not isinstance(data, dict):
                raise aiohttp.ContentTypeError(
                    response.request_info, response.history,
                    message=f"Expected JSON object from provider {self.name}",
                )
            return data
