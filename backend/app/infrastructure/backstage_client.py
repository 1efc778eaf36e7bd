"""
Zoho Backstage ticketing client.

Orders are created one attendee at a time against the event's member ticket
class. A "already registered" rejection is reported as a duplicate
reservation, not an error.
"""

from typing import Optional

from app.core.config import get_settings
from app.core.exceptions import ExternalServiceError
from app.infrastructure.http_client import OAuthJSONClient, post_token_form
from app.infrastructure.token_cache import OAuthTokenCache, TokenGrant
from app.services.interfaces.platforms import (
    AttendeeDetails,
    ExternalOrder,
    ExternalReservation,
    TicketingPlatform,
)

settings = get_settings()

DUPLICATE_ERROR_CODES = {"ATTENDEE_ALREADY_REGISTERED", "DUPLICATE_ATTENDEE", "already_registered"}


async def fetch_zoho_token(refresh_token: Optional[str]) -> TokenGrant:
    if not (settings.ZOHO_CLIENT_ID and settings.ZOHO_CLIENT_SECRET and refresh_token):
        raise ExternalServiceError("backstage", "Zoho credentials not configured")
    payload = await post_token_form(
        "backstage",
        f"{settings.ZOHO_ACCOUNTS_URL}/oauth/v2/token",
        data={
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": settings.ZOHO_CLIENT_ID,
            "client_secret": settings.ZOHO_CLIENT_SECRET,
        },
    )
    # Zoho does not rotate refresh tokens.
    return TokenGrant(access_token=payload["access_token"], expires_in=int(payload.get("expires_in", 3600)))


class BackstageClient(OAuthJSONClient, TicketingPlatform):
    provider = "backstage"
    auth_scheme = "Zoho-oauthtoken"

    def __init__(self, tokens: Optional[OAuthTokenCache] = None, **kwargs):
        super().__init__(
            settings.ZOHO_BACKSTAGE_URL,
            tokens or OAuthTokenCache("zoho", fetch_zoho_token, settings.ZOHO_REFRESH_TOKEN),
            **kwargs,
        )
        self.portal_id = settings.ZOHO_BACKSTAGE_PORTAL_ID

    def _event_path(self, event_external_id: str) -> str:
        return f"/portals/{self.portal_id}/events/{event_external_id}"

    async def create_order(
        self, event_external_id: str, ticket_class_id: Optional[str], attendee: AttendeeDetails
    ) -> ExternalReservation:
        body = {
            "ticket_class_id": ticket_class_id,
            "buyer": {"email": attendee.email},
            "attendees": [
                {
                    "email": attendee.email,
                    "first_name": attendee.first_name or "",
                    "last_name": attendee.last_name or "",
                }
            ],
        }
        response = await self.request("POST", f"{self._event_path(event_external_id)}/orders", json=body)

        if response.status_code in (400, 409):
            payload = _safe_json(response)
            if _error_code(payload) in DUPLICATE_ERROR_CODES:
                existing = payload.get("order_id") or payload.get("data", {}).get("order_id")
                return ExternalReservation(external_id=existing and str(existing), duplicate=True)

        self.raise_for_error(response, "create_order")
        order = _safe_json(response).get("order", {})
        return ExternalReservation(external_id=str(order["id"]) if order.get("id") else None)

    async def list_orders(self, event_external_id: str) -> list[ExternalOrder]:
        orders: list[ExternalOrder] = []
        page = 1
        while True:
            response = await self.request(
                "GET",
                f"{self._event_path(event_external_id)}/orders",
                params={"page": page, "per_page": 100},
            )
            self.raise_for_error(response, "list_orders")
            payload = _safe_json(response)
            for raw in payload.get("orders", []):
                emails = [a.get("email", "").lower() for a in raw.get("attendees", []) if a.get("email")]
                buyer = (raw.get("buyer") or {}).get("email")
                if buyer and not emails:
                    emails = [buyer.lower()]
                orders.append(
                    ExternalOrder(
                        order_id=str(raw.get("id")),
                        emails=emails,
                        cancelled=str(raw.get("status", "")).lower() in ("cancelled", "canceled", "refunded"),
                    )
                )
            if not payload.get("page_context", {}).get("has_more_page"):
                return orders
            page += 1

    async def cancel_order(self, event_external_id: str, order_id: str, reason: str) -> None:
        response = await self.request(
            "POST",
            f"{self._event_path(event_external_id)}/orders/{order_id}/cancel",
            json={"reason": reason},
        )
        self.raise_for_error(response, "cancel_order")


def _safe_json(response) -> dict:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _error_code(payload: dict) -> Optional[str]:
    error = payload.get("error") or payload.get("code")
    if isinstance(error, dict):
        return error.get("code")
    return error
