"""
Member of an organisation. Admin capability gates ledger cancellation.
"""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String

from app.db.base import Base, TimestampMixin


class Member(Base, TimestampMixin):
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    is_admin = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, email={self.email})>"
