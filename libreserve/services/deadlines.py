from datetime import datetime, timedelta
from typing import Optional

from libreserve.core.config import settings
from libreserve.models.models import ReservationStatus

OVERDUE = "overdue"

TERMINAL_STATUSES = frozenset({
    ReservationStatus.RETURNED,
    ReservationStatus.CANCELLED,
    ReservationStatus.EXPIRED,
})


def pickup_deadline_for(reserved_at: datetime, hours: Optional[int] = None) -> datetime:
    if hours is None:
        hours = settings.pickup_window_hours
    return reserved_at + timedelta(hours=hours)


def return_deadline_for(picked_up_at: datetime, days: Optional[int] = None) -> datetime:
    if days is None:
        days = settings.loan_period_days
    return picked_up_at + timedelta(days=days)


def is_picked_up(reservation) -> bool:
    if reservation.status == ReservationStatus.PICKED_UP:
        return True
    return reservation.status == ReservationStatus.ACTIVE and reservation.pickup_date is not None


def is_expired(reservation, now: datetime) -> bool:
    return (
        reservation.status == ReservationStatus.ACTIVE
        and not is_picked_up(reservation)
        and reservation.pickup_deadline is not None
        and now > reservation.pickup_deadline
    )


def is_overdue(reservation, now: datetime) -> bool:
    return (
        is_picked_up(reservation)
        and reservation.return_deadline is not None
        and now > reservation.return_deadline
    )


def hours_remaining(reservation, now: datetime) -> Optional[int]:
    # signed, truncated toward zero; None once terminal
    if reservation.status in TERMINAL_STATUSES:
        return None
    deadline = reservation.return_deadline if is_picked_up(reservation) else reservation.pickup_deadline
    if deadline is None:
        return None
    return int((deadline - now).total_seconds() / 3600)


def calculated_status(reservation, now: datetime) -> str:
    if is_overdue(reservation, now):
        return OVERDUE
    if is_expired(reservation, now):
        return ReservationStatus.EXPIRED.value
    if is_picked_up(reservation):
        return ReservationStatus.PICKED_UP.value
    return ReservationStatus(reservation.status).value
