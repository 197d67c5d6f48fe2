from sqlalchemy import Boolean, Column, DateTime, Float, Integer, Numeric, String

from .db import Base


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(String(64), primary_key=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    booking_type = Column(String(16), nullable=True)
    status = Column(String(16), nullable=False, default="pending")
    payment_status = Column(String(16), nullable=False, default="none")
    payment_method = Column(String(8), nullable=True)
    transaction_id = Column(String(128), unique=True, index=True, nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    version = Column(Integer, nullable=False, default=0)


class PaymentAttemptModel(Base):
    """Append-only log of issued transaction ids; rows change state, never disappear."""

    __tablename__ = "payment_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(128), unique=True, index=True, nullable=False)
    booking_id = Column(String(64), index=True, nullable=False)
    channel = Column(String(8), nullable=False)
    amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    state = Column(String(16), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    payment_reference = Column(String(128), nullable=True)


class DealModel(Base):
    __tablename__ = "deals"

    id = Column(String(128), primary_key=True)
    origin = Column(String(8), index=True)
    origin_city = Column(String(128), default="")
    destination = Column(String(8), index=True)
    dest_city = Column(String(128), default="")
    airline = Column(String(128))
    airline_code = Column(String(8), default="")
    price = Column(Float, index=True)
    currency = Column(String(3), default="USD")
    departure_date = Column(String(10))
    return_date = Column(String(10))
    cabin_class = Column(String(32), default="ECONOMY")
    booking_link = Column(String(512))
    source = Column(String(32), index=True, default="manual")
    published = Column(Boolean, default=True)
    fetched_at = Column(DateTime(timezone=True))
