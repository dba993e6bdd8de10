import logging
from datetime import date, datetime, timedelta
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session, joinedload

from libreserve.core.clock import utcnow
from libreserve.core.config import Settings, settings as default_settings
from libreserve.core.database import atomic
from libreserve.core.errors import (DuplicateActiveReservation, Forbidden, InvalidArgument,
                                    InvalidState, InvalidTransition, NotFound, QuotaExceeded)
from libreserve.models.models import Reservation, ReservationStatus, User
from libreserve.services import deadlines
from libreserve.services.inventory import InventoryLedger, book_detail

logger = logging.getLogger("libreserve.reservations")

TRANSITIONS: Dict[ReservationStatus, FrozenSet[ReservationStatus]] = {
    ReservationStatus.ACTIVE: frozenset({
        ReservationStatus.PICKED_UP,
        ReservationStatus.CANCELLED,
        ReservationStatus.EXPIRED,
    }),
    ReservationStatus.PICKED_UP: frozenset({ReservationStatus.RETURNED}),
    ReservationStatus.RETURNED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.EXPIRED: frozenset(),
}

# transitions that hand the copy back to the shelf
RELEASING = frozenset({
    ReservationStatus.RETURNED,
    ReservationStatus.CANCELLED,
    ReservationStatus.EXPIRED,
})

LIST_MAX_LIMIT = 100


def can_transition(source: ReservationStatus, target: ReservationStatus) -> bool:
    return target in TRANSITIONS.get(source, frozenset())


class ReservationStateMachine:
    def __init__(self, db: Session, settings: Settings = None, ledger: InventoryLedger = None) -> None:
        self.db = db
        self.settings = settings or default_settings
        self.ledger = ledger or InventoryLedger(db)

    # ---- creation

    def create(self, user_id: int, book_id: int, notes: Optional[str] = None,
               now: Optional[datetime] = None) -> Reservation:
        """Reserve one copy; checks book, duplicate, quota, then stock."""
        now = now or utcnow()
        self._check_notes(notes)
        with atomic(self.db):
            self._lock_user(user_id)
            book = self.ledger.get_book(book_id)

            existing = (
                self.db.query(Reservation)
                .filter(Reservation.user_id == user_id,
                        Reservation.book_id == book_id,
                        Reservation.status == ReservationStatus.ACTIVE)
                .first()
            )
            if existing:
                raise DuplicateActiveReservation(
                    "You already have an active reservation for this book",
                    existing_reservation_id=existing.id,
                    reservation_date=existing.reservation_date.isoformat(),
                    **book_detail(book),
                )

            current_active = self.count_active(user_id)
            limit = self.settings.max_active_reservations
            if current_active >= limit:
                raise QuotaExceeded(
                    f"You reached the limit of {limit} simultaneous reservations",
                    current_active=current_active, max_allowed=limit, requested=1,
                    book_id=book_id,
                )

            self.ledger.reserve(book_id)
            reservation = Reservation(
                user_id=user_id,
                book_id=book_id,
                status=ReservationStatus.ACTIVE,
                reservation_date=now,
                pickup_deadline=deadlines.pickup_deadline_for(now, self.settings.pickup_window_hours),
                renewal_count=0,
                notes=notes or "",
            )
            self.db.add(reservation)
            self.db.flush()
        logger.info(f"Reservation {reservation.id} created: user {user_id} book {book_id}")
        return reservation

    # ---- transitions

    def mark_picked_up(self, reservation_id: int, now: Optional[datetime] = None) -> Reservation:
        now = now or utcnow()
        with atomic(self.db):
            reservation = self._load_for_update(reservation_id)
            self._transition(
                reservation, ReservationStatus.PICKED_UP,
                pickup_date=now,
                return_deadline=deadlines.return_deadline_for(now, self.settings.loan_period_days),
            )
        return reservation

    def mark_returned(self, reservation_id: int, now: Optional[datetime] = None) -> Reservation:
        now = now or utcnow()
        with atomic(self.db):
            reservation = self._load_for_update(reservation_id)
            self._transition(reservation, ReservationStatus.RETURNED, return_date=now)
        return reservation

    def cancel(self, reservation_id: int, user_id: int, is_admin: bool = False) -> Reservation:
        with atomic(self.db):
            reservation = self._load_for_update(reservation_id)
            if reservation.user_id != user_id and not is_admin:
                raise Forbidden("Reservation does not belong to you", reservation_id=reservation_id)
            self._transition(reservation, ReservationStatus.CANCELLED)
        return reservation

    def expire(self, reservation_id: int, now: Optional[datetime] = None, force: bool = False) -> Reservation:
        now = now or utcnow()
        with atomic(self.db):
            reservation = self._load_for_update(reservation_id)
            if not force and reservation.status == ReservationStatus.ACTIVE \
                    and not deadlines.is_expired(reservation, now):
                raise InvalidTransition(
                    "Pickup deadline has not passed yet",
                    reservation_id=reservation.id,
                    current_status=reservation.status.value,
                    target_status=ReservationStatus.EXPIRED.value,
                    pickup_deadline=reservation.pickup_deadline.isoformat(),
                )
            self._transition(reservation, ReservationStatus.EXPIRED)
        return reservation

    def extend_return_deadline(self, reservation_id: int, days: int) -> Reservation:
        limit = self.settings.max_extension_days
        if days < 1 or days > limit:
            raise InvalidArgument(f"Number of days must be between 1 and {limit}",
                                  days=days, reservation_id=reservation_id)
        with atomic(self.db):
            reservation = self._load_for_update(reservation_id)
            if reservation.status != ReservationStatus.PICKED_UP or reservation.return_deadline is None:
                raise InvalidState(
                    "Only picked-up reservations can have their return deadline extended",
                    reservation_id=reservation.id,
                    current_status=reservation.status.value,
                )
            previous = reservation.return_deadline
            reservation.return_deadline = previous + timedelta(days=days)
            reservation.renewal_count = (reservation.renewal_count or 0) + 1
            self.db.flush()
        logger.info(
            f"Reservation {reservation.id} return deadline extended by {days} day(s) "
            f"to {reservation.return_deadline.isoformat()}"
        )
        return reservation

    def update_notes(self, reservation_id: int, user_id: int, notes: Optional[str]) -> Reservation:
        self._check_notes(notes)
        with atomic(self.db):
            reservation = self._load(reservation_id)
            if reservation.user_id != user_id:
                raise Forbidden("Reservation does not belong to you", reservation_id=reservation_id)
            reservation.notes = notes or ""
            self.db.flush()
        return reservation

    def admin_update_status(self, reservation_id: int, target: str, admin_id: int,
                            notes: Optional[str] = None, now: Optional[datetime] = None) -> Reservation:
        """Move a reservation to ``target`` through the matching transition."""
        try:
            status = ReservationStatus(target)
        except ValueError:
            raise InvalidTransition(
                f"Unknown status '{target}'",
                reservation_id=reservation_id, target_status=target,
                allowed_statuses=[s.value for s in ReservationStatus],
            )
        self._check_notes(notes)
        with atomic(self.db):
            if status == ReservationStatus.PICKED_UP:
                reservation = self.mark_picked_up(reservation_id, now=now)
            elif status == ReservationStatus.RETURNED:
                reservation = self.mark_returned(reservation_id, now=now)
            elif status == ReservationStatus.CANCELLED:
                reservation = self.cancel(reservation_id, admin_id, is_admin=True)
            elif status == ReservationStatus.EXPIRED:
                reservation = self.expire(reservation_id, now=now, force=True)
            else:
                reservation = self._load(reservation_id)
                raise InvalidTransition(
                    f"Cannot move reservation from '{reservation.status.value}' to '{status.value}'",
                    reservation_id=reservation.id,
                    current_status=reservation.status.value,
                    target_status=status.value,
                )
            if notes is not None:
                reservation.notes = notes
                self.db.flush()
        return reservation

    # ---- reads

    def get(self, reservation_id: int, user_id: int, is_admin: bool = False) -> Reservation:
        reservation = self._load(reservation_id)
        if reservation.user_id != user_id and not is_admin:
            raise Forbidden("Reservation does not belong to you", reservation_id=reservation_id)
        return reservation

    def count_active(self, user_id: int) -> int:
        return (
            self.db.query(func.count(Reservation.id))
            .filter(Reservation.user_id == user_id, Reservation.status == ReservationStatus.ACTIVE,
                    Reservation.pickup_date.is_(None))
            .scalar()
        )

    def list_for_user(self, user_id: int, status: Optional[str] = None, limit: int = 20,
                      offset: int = 0, order: str = "desc",
                      now: Optional[datetime] = None) -> Dict[str, object]:
        now = now or utcnow()
        order = order.lower() if order and order.lower() in ("asc", "desc") else "desc"
        limit = min(max(int(limit), 1), LIST_MAX_LIMIT)
        offset = max(int(offset), 0)

        query = self.db.query(Reservation).filter(Reservation.user_id == user_id)
        if status and status != "all":
            query = query.filter(status_filter(status, now))
        total = query.count()
        ordering = Reservation.reservation_date.asc() if order == "asc" else Reservation.reservation_date.desc()
        rows = (
            query.options(joinedload(Reservation.book))
            .order_by(ordering, Reservation.id)
            .offset(offset).limit(limit).all()
        )
        return {
            "reservations": [present(r, now) for r in rows],
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "has_next": offset + limit < total,
                "has_prev": offset > 0,
                "showing": len(rows),
            },
            "filters": {"status": status or "all", "order": order},
        }

    def admin_filter(self, status: Optional[str] = None, user_id: Optional[int] = None,
                     book_id: Optional[int] = None, start_date: Optional[date] = None,
                     end_date: Optional[date] = None, limit: int = 50, offset: int = 0,
                     now: Optional[datetime] = None) -> Dict[str, object]:
        now = now or utcnow()
        limit = min(max(int(limit), 1), LIST_MAX_LIMIT)
        offset = max(int(offset), 0)

        query = self.db.query(Reservation)
        if status:
            query = query.filter(status_filter(status, now))
        if user_id is not None:
            query = query.filter(Reservation.user_id == user_id)
        if book_id is not None:
            query = query.filter(Reservation.book_id == book_id)
        if start_date:
            query = query.filter(Reservation.reservation_date >= datetime.combine(start_date, datetime.min.time()))
        if end_date:
            query = query.filter(Reservation.reservation_date < datetime.combine(end_date + timedelta(days=1),
                                                                                  datetime.min.time()))
        total = query.count()
        rows = (
            query.options(joinedload(Reservation.book), joinedload(Reservation.user))
            .order_by(Reservation.reservation_date.desc(), Reservation.id.desc())
            .offset(offset).limit(limit).all()
        )
        return {
            "reservations": [present(r, now, with_user=True) for r in rows],
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "has_next": offset + limit < total,
                "has_prev": offset > 0,
                "showing": len(rows),
            },
            "filters": {
                "status": status, "user_id": user_id, "book_id": book_id,
                "start_date": start_date.isoformat() if start_date else None,
                "end_date": end_date.isoformat() if end_date else None,
            },
        }

    # ---- internals

    def _load(self, reservation_id: int) -> Reservation:
        reservation = (
            self.db.query(Reservation)
            .filter(Reservation.id == reservation_id)
            .populate_existing()
            .first()
        )
        if not reservation:
            raise NotFound("Reservation not found", resource="reservation", reservation_id=reservation_id)
        return reservation

    def _load_for_update(self, reservation_id: int) -> Reservation:
        reservation = self._load(reservation_id)
        if reservation.status == ReservationStatus.ACTIVE and reservation.pickup_date is not None:
            self._adopt_legacy_pickup(reservation)
        return reservation

    def _adopt_legacy_pickup(self, reservation: Reservation) -> None:
        # rows written before picked-up existed: active with a pickup_date, copy already out
        return_deadline = reservation.return_deadline or deadlines.return_deadline_for(
            reservation.pickup_date, self.settings.loan_period_days)
        (
            self.db.query(Reservation)
            .filter(Reservation.id == reservation.id,
                    Reservation.status == ReservationStatus.ACTIVE,
                    Reservation.pickup_date.isnot(None))
            .update({"status": ReservationStatus.PICKED_UP, "return_deadline": return_deadline},
                    synchronize_session="fetch")
        )
        self.db.refresh(reservation)
        logger.info(f"Reservation {reservation.id} with legacy pickup moved to picked-up")

    def _lock_user(self, user_id: int) -> User:
        # serializes quota checks per reader on databases with row locks
        user = self.db.query(User).filter(User.id == user_id).with_for_update().first()
        if not user:
            raise NotFound("User not found", resource="user", user_id=user_id)
        return user

    def _check_notes(self, notes: Optional[str]) -> None:
        limit = self.settings.notes_max_length
        if notes and len(notes) > limit:
            raise InvalidArgument(f"Notes cannot be longer than {limit} characters",
                                  length=len(notes), max_length=limit)

    def _transition(self, reservation: Reservation, target: ReservationStatus, **values) -> Reservation:
        source = reservation.status
        if not can_transition(source, target):
            raise InvalidTransition(
                f"Cannot move reservation from '{source.value}' to '{target.value}'",
                reservation_id=reservation.id,
                current_status=source.value,
                target_status=target.value,
            )
        updated = (
            self.db.query(Reservation)
            .filter(Reservation.id == reservation.id, Reservation.status == source)
            .update({"status": target, **values}, synchronize_session="fetch")
        )
        if not updated:
            # another session moved it first
            self.db.refresh(reservation)
            raise InvalidTransition(
                f"Reservation changed to '{reservation.status.value}' concurrently",
                reservation_id=reservation.id,
                current_status=reservation.status.value,
                target_status=target.value,
            )
        if target in RELEASING:
            self.ledger.release(reservation.book_id)
        self.db.refresh(reservation)
        logger.info(
            f"Reservation {reservation.id} {source.value} -> {target.value} (book {reservation.book_id})"
        )
        return reservation


def status_filter(status: str, now: datetime):
    """SQL criterion for a stored or derived status, mirroring ``deadlines``."""
    picked_up = or_(
        Reservation.status == ReservationStatus.PICKED_UP,
        and_(Reservation.status == ReservationStatus.ACTIVE, Reservation.pickup_date.isnot(None)),
    )
    pending_expiry = and_(
        Reservation.status == ReservationStatus.ACTIVE,
        Reservation.pickup_date.is_(None),
        Reservation.pickup_deadline < now,
    )
    if status == deadlines.OVERDUE:
        return and_(picked_up, Reservation.return_deadline < now)
    if status == ReservationStatus.EXPIRED.value:
        return or_(Reservation.status == ReservationStatus.EXPIRED, pending_expiry)
    try:
        stored = ReservationStatus(status)
    except ValueError:
        raise InvalidArgument(f"Unknown status filter '{status}'", status=status)
    if stored == ReservationStatus.ACTIVE:
        return and_(Reservation.status == ReservationStatus.ACTIVE,
                    Reservation.pickup_date.is_(None),
                    Reservation.pickup_deadline >= now)
    if stored == ReservationStatus.PICKED_UP:
        return and_(picked_up, or_(Reservation.return_deadline.is_(None), Reservation.return_deadline >= now))
    return Reservation.status == stored


def present(reservation: Reservation, now: datetime, with_user: bool = False) -> Dict[str, object]:
    """Reservation as reported to clients, with derived status and countdown."""
    book = reservation.book
    view = {
        "id": reservation.id,
        "user_id": reservation.user_id,
        "book_id": reservation.book_id,
        "status": reservation.status.value,
        "calculated_status": deadlines.calculated_status(reservation, now),
        "hours_remaining": deadlines.hours_remaining(reservation, now),
        "reservation_date": reservation.reservation_date,
        "pickup_deadline": reservation.pickup_deadline,
        "pickup_date": reservation.pickup_date,
        "return_deadline": reservation.return_deadline,
        "return_date": reservation.return_date,
        "renewal_count": reservation.renewal_count,
        "notes": reservation.notes,
        "book_title": book.title if book else None,
        "book_author": book.author if book else None,
    }
    if with_user and reservation.user is not None:
        view["user_name"] = reservation.user.name
        view["user_email"] = reservation.user.email
    return view


def present_all(reservations: List[Reservation], now: datetime) -> List[Dict[str, object]]:
    return [present(r, now) for r in reservations]
