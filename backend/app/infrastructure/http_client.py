"""
Shared plumbing for OAuth-authenticated JSON APIs.
"""

from typing import Any, Optional

import httpx

from app.core.config import get_settings
from app.core.exceptions import ExternalServiceError
from app.core.logging import get_logger
from app.infrastructure.token_cache import OAuthTokenCache

logger = get_logger(__name__)
settings = get_settings()


class OAuthJSONClient:
    """Base for provider clients: bearer auth from a token cache, one retry on 401."""

    provider = "external"
    auth_scheme = "Bearer"

    def __init__(self, base_url: str, tokens: OAuthTokenCache, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.tokens = tokens
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.EXTERNAL_HTTP_TIMEOUT)

    async def _headers(self) -> dict[str, str]:
        token = await self.tokens.get_valid_token()
        return {
            "Authorization": f"{self.auth_scheme} {token}",
            "Accept": "application/json",
        }

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        extra_headers = kwargs.pop("headers", {})
        for attempt in (1, 2):
            headers = {**(await self._headers()), **extra_headers}
            try:
                response = await self.http_client.request(method, url, headers=headers, **kwargs)
            except httpx.HTTPError as e:
                logger.error("external_request_error", provider=self.provider, url=url, error=str(e))
                raise ExternalServiceError(self.provider, f"request failed: {e}") from e

            if response.status_code == 401 and attempt == 1:
                logger.info("external_token_rejected", provider=self.provider)
                self.tokens.invalidate()
                continue
            return response

        return response

    def raise_for_error(self, response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        body = response.text[:500]
        logger.error(
            "external_request_rejected",
            provider=self.provider,
            action=action,
            status_code=response.status_code,
            body=body,
        )
        raise ExternalServiceError(
            self.provider, f"{action} failed ({response.status_code}): {body}", response.status_code
        )

    async def close(self) -> None:
        await self.http_client.aclose()


async def post_token_form(
    provider: str,
    url: str,
    data: dict[str, str],
    auth: Optional[tuple[str, str]] = None,
    params: Optional[dict[str, str]] = None,
) -> dict[str, Any]:
    """POST an OAuth token request and return the decoded JSON body."""
    async with httpx.AsyncClient(timeout=settings.EXTERNAL_HTTP_TIMEOUT) as client:
        try:
            response = await client.post(url, data=data, auth=auth, params=params)
        except httpx.HTTPError as e:
            raise ExternalServiceError(provider, f"token request failed: {e}") from e

    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not response.is_success or "error" in payload or "access_token" not in payload:
        raise ExternalServiceError(
            provider, f"token refresh rejected ({response.status_code}): {response.text[:300]}"
        )
    return payload
