"""
Zoom webinar client (server-to-server OAuth).
"""

from typing import Optional

from app.core.config import get_settings
from app.core.exceptions import ExternalServiceError
from app.infrastructure.http_client import OAuthJSONClient, post_token_form
from app.infrastructure.token_cache import OAuthTokenCache, TokenGrant
from app.services.interfaces.platforms import (
    AttendeeDetails,
    ExternalReservation,
    WebinarInfo,
    WebinarPlatform,
)

settings = get_settings()

# approval_type 2 = "no registration required"
NO_REGISTRATION_APPROVAL_TYPE = 2
# "Registrant already exists" style error codes
DUPLICATE_REGISTRANT_CODES = {3027, 3043}


async def fetch_zoom_token(refresh_token: Optional[str]) -> TokenGrant:
    if not (settings.ZOOM_ACCOUNT_ID and settings.ZOOM_CLIENT_ID and settings.ZOOM_CLIENT_SECRET):
        raise ExternalServiceError("zoom", "Zoom credentials not configured")
    payload = await post_token_form(
        "zoom",
        "https://zoom.us/oauth/token",
        data={"grant_type": "account_credentials", "account_id": settings.ZOOM_ACCOUNT_ID},
        auth=(settings.ZOOM_CLIENT_ID, settings.ZOOM_CLIENT_SECRET),
    )
    return TokenGrant(access_token=payload["access_token"], expires_in=int(payload.get("expires_in", 3600)))


class ZoomClient(OAuthJSONClient, WebinarPlatform):
    provider = "zoom"

    def __init__(self, tokens: Optional[OAuthTokenCache] = None, **kwargs):
        super().__init__(
            settings.ZOOM_API_URL,
            tokens or OAuthTokenCache("zoom", fetch_zoom_token),
            **kwargs,
        )

    async def get_webinar(self, webinar_id: str) -> Optional[WebinarInfo]:
        response = await self.request("GET", f"/webinars/{webinar_id}")
        if response.status_code == 404:
            return None
        self.raise_for_error(response, "get_webinar")
        payload = response.json()
        approval_type = (payload.get("settings") or {}).get("approval_type", NO_REGISTRATION_APPROVAL_TYPE)
        return WebinarInfo(
            webinar_id=str(payload.get("id", webinar_id)),
            registration_required=approval_type != NO_REGISTRATION_APPROVAL_TYPE,
            topic=payload.get("topic"),
        )

    async def register_attendee(self, webinar_id: str, attendee: AttendeeDetails) -> ExternalReservation:
        response = await self.request(
            "POST",
            f"/webinars/{webinar_id}/registrants",
            json={
                "email": attendee.email,
                "first_name": attendee.first_name or attendee.email.split("@")[0],
                "last_name": attendee.last_name or "",
            },
        )
        if response.status_code in (400, 409):
            try:
                code = response.json().get("code")
            except ValueError:
                code = None
            if code in DUPLICATE_REGISTRANT_CODES:
                return ExternalReservation(external_id=None, duplicate=True)

        self.raise_for_error(response, "register_attendee")
        payload = response.json()
        return ExternalReservation(
            external_id=str(payload.get("registrant_id") or payload.get("id") or ""),
            join_url=payload.get("join_url"),
        )

    async def cancel_registrant(self, webinar_id: str, registrant_id: str, email: str) -> None:
        response = await self.request(
            "PUT",
            f"/webinars/{webinar_id}/registrants/status",
            json={"action": "cancel", "registrants": [{"id": registrant_id, "email": email}]},
        )
        self.raise_for_error(response, "cancel_registrant")
