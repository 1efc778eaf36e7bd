from app.models.organization import Organization, ProgramTicketBalance
from app.models.member import Member
from app.models.program import Program, OfferType, BogoLogic
from app.models.event import Event
from app.models.voucher import Voucher, VoucherStatus
from app.models.discount_code import DiscountCode, DiscountCodeUsage, DiscountType
from app.models.transaction import ProgramTicketTransaction, TransactionType, TransactionStatus
from app.models.booking import Booking, BookingStatus

__all__ = [
    "Organization", "ProgramTicketBalance", "Member",
    "Program", "OfferType", "BogoLogic", "Event",
    "Voucher", "VoucherStatus",
    "DiscountCode", "DiscountCodeUsage", "DiscountType",
    "ProgramTicketTransaction", "TransactionType", "TransactionStatus",
    "Booking", "BookingStatus",
]
