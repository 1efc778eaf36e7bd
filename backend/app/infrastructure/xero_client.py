"""
Xero accounting client: contacts and ACCREC invoices.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from app.core.config import get_settings
from app.core.exceptions import ExternalServiceError
from app.infrastructure.http_client import OAuthJSONClient, post_token_form
from app.infrastructure.token_cache import OAuthTokenCache, TokenGrant
from app.services.interfaces.platforms import AccountingPlatform, InvoiceLine, InvoiceResult

settings = get_settings()


async def fetch_xero_token(refresh_token: Optional[str]) -> TokenGrant:
    if not (settings.XERO_CLIENT_ID and settings.XERO_CLIENT_SECRET and refresh_token):
        raise ExternalServiceError("xero", "Xero credentials not configured")
    payload = await post_token_form(
        "xero",
        "https://identity.xero.com/connect/token",
        data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        auth=(settings.XERO_CLIENT_ID, settings.XERO_CLIENT_SECRET),
    )
    return TokenGrant(
        access_token=payload["access_token"],
        expires_in=int(payload.get("expires_in", 1800)),
        refresh_token=payload.get("refresh_token"),
    )


class XeroClient(OAuthJSONClient, AccountingPlatform):
    provider = "xero"

    def __init__(self, tokens: Optional[OAuthTokenCache] = None, **kwargs):
        super().__init__(
            "https://api.xero.com/api.xro/2.0",
            tokens or OAuthTokenCache("xero", fetch_xero_token, settings.XERO_REFRESH_TOKEN),
            **kwargs,
        )

    async def _headers(self) -> dict[str, str]:
        headers = await super()._headers()
        headers["xero-tenant-id"] = settings.XERO_TENANT_ID
        return headers

    async def find_or_create_contact(self, name: str, email: Optional[str] = None) -> str:
        escaped = name.replace('"', '\\"')
        response = await self.request("GET", "/Contacts", params={"where": f'Name=="{escaped}"'})
        self.raise_for_error(response, "find_contact")
        contacts = response.json().get("Contacts", [])
        if contacts:
            return contacts[0]["ContactID"]

        contact = {"Name": name}
        if email:
            contact["EmailAddress"] = email
        response = await self.request("POST", "/Contacts", json={"Contacts": [contact]})
        self.raise_for_error(response, "create_contact")
        return response.json()["Contacts"][0]["ContactID"]

    async def create_invoice(
        self, contact_id: str, lines: list[InvoiceLine], reference: Optional[str]
    ) -> InvoiceResult:
        today = date.today()
        invoice = {
            "Type": "ACCREC",
            "Contact": {"ContactID": contact_id},
            "Date": today.isoformat(),
            "DueDate": (today + timedelta(days=settings.XERO_INVOICE_DUE_DAYS)).isoformat(),
            "LineAmountTypes": "Exclusive",
            "Status": "AUTHORISED",
            "CurrencyCode": settings.CURRENCY,
            "LineItems": [
                {
                    "Description": line.description,
                    "Quantity": line.quantity,
                    "UnitAmount": float(line.unit_amount),
                    "AccountCode": settings.XERO_SALES_ACCOUNT_CODE,
                }
                for line in lines
            ],
        }
        if reference:
            invoice["Reference"] = reference

        response = await self.request("POST", "/Invoices", json={"Invoices": [invoice]})
        self.raise_for_error(response, "create_invoice")
        created = response.json()["Invoices"][0]
        return InvoiceResult(
            invoice_id=created["InvoiceID"],
            invoice_number=created.get("InvoiceNumber"),
            total=Decimal(str(created.get("Total", 0))),
        )

    async def update_invoice_reference(self, invoice_id: str, reference: str) -> None:
        response = await self.request(
            "POST",
            f"/Invoices/{invoice_id}",
            json={"Invoices": [{"InvoiceID": invoice_id, "Reference": reference}]},
        )
        self.raise_for_error(response, "update_invoice_reference")
