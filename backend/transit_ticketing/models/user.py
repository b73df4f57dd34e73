"""
User model: the authoritative record for identity and purchase counters.

Key design decisions:
- `tax_code` is the business identifier; every cache key is derived from it
- UNIQUE constraints on `tax_code` and `contact` are the final arbiter when two
  registrations race past the service-level existence checks
- `total_tickets` is only ever changed with an atomic in-database increment
- Tickets themselves are never stored here; they live in Redis with a TTL
"""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from transit_ticketing.db.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tax_code = Column(String(14), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    contact = Column(String(255), unique=True, index=True, nullable=False)
    total_tickets = Column(Integer, nullable=False, default=0)
    last_ticket_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("total_tickets >= 0", name="check_total_tickets_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<User(tax_code={self.tax_code}, total_tickets={self.total_tickets})>"
