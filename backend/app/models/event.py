"""
Event members book onto.

An event is bound to at most one external platform:
- backstage_event_id set -> tickets are created on the ticketing platform
- location is a webinar join URL -> attendees are registered on the webinar
- neither -> no external step, bookings confirm immediately

program_tag set means places are paid for with program tickets; otherwise the
event is one-off and priced per attendee at ticket_price.
"""

from decimal import Decimal

from sqlalchemy import Column, DateTime, Index, Integer, Numeric, String

from app.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=True)
    location = Column(String(500), nullable=True)
    program_tag = Column(String(100), nullable=True, index=True)
    ticket_price = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    backstage_event_id = Column(String(100), nullable=True)
    backstage_ticket_type_id = Column(String(100), nullable=True)

    __table_args__ = (
        Index("ix_events_start_date", "start_date"),
    )

    @property
    def is_program_event(self) -> bool:
        return bool(self.program_tag)

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, program={self.program_tag})>"
