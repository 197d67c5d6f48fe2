"""
Record stores over the SQLAlchemy session factory.

BookingRecordStore is the only way booking rows change. Every mutation is a
compare-and-set on the row's `version` column, executed as a single UPDATE
inside one transaction together with its payment-attempt bookkeeping.
"""
import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from booking_schemas import Booking, MinPriceDeal, PaymentAttempt
from errors import ConflictError, NotFoundError
from persistence.models import BookingModel, DealModel, PaymentAttemptModel
from utils import as_utc, now_utc

logger = logging.getLogger(__name__)


def model_to_pydantic(row: BookingModel) -> Booking:
    return Booking(
        id=row.id,
        amount=Decimal(str(row.amount)),
        currency=row.currency,
        booking_type=row.booking_type,
        status=row.status,
        payment_status=row.payment_status,
        payment_method=row.payment_method,
        transaction_id=row.transaction_id,
        confirmed_at=as_utc(row.confirmed_at),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        version=row.version,
    )


def attempt_to_pydantic(row: PaymentAttemptModel) -> PaymentAttempt:
    return PaymentAttempt(
        transaction_id=row.transaction_id,
        booking_id=row.booking_id,
        channel=row.channel,
        amount=Decimal(str(row.amount)) if row.amount is not None else None,
        currency=row.currency,
        state=row.state,
        created_at=as_utc(row.created_at),
        expires_at=as_utc(row.expires_at),
        payment_reference=row.payment_reference,
    )


class BookingRecordStore:
    def __init__(self, session_factory):
        self._sessions = session_factory

    def create_booking(
        self,
        *,
        amount: Decimal,
        currency: str,
        booking_id: Optional[str] = None,
        booking_type: Optional[str] = None,
    ) -> Booking:
        """Bookings are created upstream by the search-to-book flow; this is its write path."""
        now = now_utc()
        row = BookingModel(
            id=booking_id or str(uuid.uuid4()),
            amount=Decimal(str(amount)),
            currency=currency.upper(),
            booking_type=booking_type,
            status="pending",
            payment_status="none",
            created_at=now,
            updated_at=now,
            version=0,
        )
        with self._sessions.begin() as session:
            session.add(row)
        return model_to_pydantic(row)

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        with self._sessions() as session:
            row = session.get(BookingModel, booking_id)
            return model_to_pydantic(row) if row else None

    def require_booking(self, booking_id: str) -> Booking:
        booking = self.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", details=booking_id)
        return booking

    def get_booking_by_transaction(self, transaction_id: str) -> Optional[Booking]:
        with self._sessions() as session:
            row = session.scalars(
                select(BookingModel).where(BookingModel.transaction_id == transaction_id)
            ).first()
            return model_to_pydantic(row) if row else None

    def compare_and_set(self, booking_id: str, expected_version: int, values: Dict[str, Any]) -> bool:
        """Apply `values` only if the row is still at `expected_version`."""
        with self._sessions.begin() as session:
            return self._cas(session, booking_id, expected_version, values)

    def reserve_slot(
        self,
        booking_id: str,
        expected_version: int,
        values: Dict[str, Any],
        attempt: PaymentAttempt,
    ) -> bool:
        """
        Point the booking at a fresh payment attempt.
        Older pending attempts of the same booking are superseded in the same transaction.
        """
        try:
            with self._sessions.begin() as session:
                if not self._cas(session, booking_id, expected_version, values):
                    return False
                session.execute(
                    update(PaymentAttemptModel)
                    .where(
                        PaymentAttemptModel.booking_id == booking_id,
                        PaymentAttemptModel.state == "pending",
                    )
                    .values(state="superseded")
                    .execution_options(synchronize_session=False)
                )
                session.add(PaymentAttemptModel(
                    transaction_id=attempt.transaction_id,
                    booking_id=booking_id,
                    channel=attempt.channel,
                    amount=attempt.amount,
                    currency=attempt.currency,
                    state=attempt.state,
                    created_at=attempt.created_at,
                    expires_at=attempt.expires_at,
                    payment_reference=attempt.payment_reference,
                ))
        except IntegrityError as exc:
            # TODO: regenerate the transaction id once on a unique-index collision
            logger.error("Transaction id %s collided for booking %s", attempt.transaction_id, booking_id)
            raise ConflictError("Transaction id already in use", details=attempt.transaction_id) from exc
        return True

    def settle(
        self,
        booking_id: str,
        expected_version: int,
        values: Dict[str, Any],
        transaction_id: str,
        attempt_state: str,
    ) -> bool:
        """CAS the booking and move the matching attempt (if any) to `attempt_state`."""
        try:
            with self._sessions.begin() as session:
                if not self._cas(session, booking_id, expected_version, values):
                    return False
                session.execute(
                    update(PaymentAttemptModel)
                    .where(
                        PaymentAttemptModel.transaction_id == transaction_id,
                        PaymentAttemptModel.booking_id == booking_id,
                    )
                    .values(state=attempt_state)
                    .execution_options(synchronize_session=False)
                )
        except IntegrityError as exc:
            logger.error("Transaction id %s already belongs to another booking than %s", transaction_id, booking_id)
            raise ConflictError("Transaction id already in use", details=transaction_id) from exc
        return True

    def get_attempt(self, transaction_id: str) -> Optional[PaymentAttempt]:
        with self._sessions() as session:
            row = session.scalars(
                select(PaymentAttemptModel).where(PaymentAttemptModel.transaction_id == transaction_id)
            ).first()
            return attempt_to_pydantic(row) if row else None

    def list_attempts(self, booking_id: str) -> List[PaymentAttempt]:
        with self._sessions() as session:
            rows = session.scalars(
                select(PaymentAttemptModel)
                .where(PaymentAttemptModel.booking_id == booking_id)
                .order_by(PaymentAttemptModel.id)
            ).all()
            return [attempt_to_pydantic(r) for r in rows]

    @staticmethod
    def _cas(session, booking_id: str, expected_version: int, values: Dict[str, Any]) -> bool:
        result = session.execute(
            update(BookingModel)
            .where(BookingModel.id == booking_id, BookingModel.version == expected_version)
            .values(version=expected_version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("Stale write rejected for booking %s at version %s", booking_id, expected_version)
            return False
        return True


class DealRecordStore:
    """Durable deal tier. Deals of one source are replaced wholesale, never merged."""

    def __init__(self, session_factory):
        self._sessions = session_factory

    def list_published(self, limit: int, source: Optional[str] = None) -> List[MinPriceDeal]:
        query = select(DealModel).where(DealModel.published.is_(True))
        if source:
            query = query.where(DealModel.source == source)
        query = query.order_by(DealModel.price.asc()).limit(limit)
        with self._sessions() as session:
            return [_deal_to_pydantic(row) for row in session.scalars(query).all()]

    def replace_source(self, source: str, deals: Iterable[MinPriceDeal]) -> int:
        deals = list(deals)
        with self._sessions.begin() as session:
            session.execute(delete(DealModel).where(DealModel.source == source))
            for deal in deals:
                session.add(DealModel(
                    id=deal.id,
                    origin=deal.origin,
                    origin_city=deal.origin_city,
                    destination=deal.destination,
                    dest_city=deal.dest_city,
                    airline=deal.airline,
                    airline_code=deal.airline_code,
                    price=deal.price,
                    currency=deal.currency,
                    departure_date=deal.departure_date,
                    return_date=deal.return_date,
                    cabin_class=deal.cabin_class,
                    booking_link=deal.booking_link,
                    source=source,
                    published=True,
                    fetched_at=deal.fetched_at or now_utc(),
                ))
        return len(deals)


def _deal_to_pydantic(row: DealModel) -> MinPriceDeal:
    return MinPriceDeal(
        id=row.id,
        origin=row.origin,
        origin_city=row.origin_city or "",
        destination=row.destination,
        dest_city=row.dest_city or "",
        airline=row.airline,
        airline_code=row.airline_code or "",
        price=row.price,
        currency=row.currency or "USD",
        departure_date=row.departure_date,
        return_date=row.return_date,
        cabin_class=row.cabin_class or "ECONOMY",
        booking_link=row.booking_link,
        fetched_at=as_utc(row.fetched_at),
    )
