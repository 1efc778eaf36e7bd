from app.schemas.purchase import PurchaseRequest, PurchaseResponse
from app.schemas.booking import (
    ProgramBookingCreate, OneOffBookingCreate, BookingClaim, PurchaseOrderUpdate,
    BookingResponse, ProgramBookingResponse, OneOffBookingResponse,
)
from app.schemas.transaction import (
    CancelTransactionRequest, ReinstateTransactionRequest, TransactionResponse,
)
from app.schemas.organization import OrganizationSummary

__all__ = [
    "PurchaseRequest", "PurchaseResponse",
    "ProgramBookingCreate", "OneOffBookingCreate", "BookingClaim", "PurchaseOrderUpdate",
    "BookingResponse", "ProgramBookingResponse", "OneOffBookingResponse",
    "CancelTransactionRequest", "ReinstateTransactionRequest", "TransactionResponse",
    "OrganizationSummary",
]
