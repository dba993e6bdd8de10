from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from libreserve.core.clock import utcnow
from libreserve.models.models import Book, Reservation, ReservationStatus, HOLDING_STATUSES
from libreserve.services import deadlines

STATUS_KEYS = ("active", "picked_up", "returned", "cancelled", "expired", "overdue")


def _breakdown(reservations, now: datetime) -> Dict[str, int]:
    counts = Counter(deadlines.calculated_status(r, now).replace("-", "_") for r in reservations)
    return {key: counts.get(key, 0) for key in STATUS_KEYS}


def user_statistics(db: Session, user_id: int, now: Optional[datetime] = None) -> Dict[str, object]:
    now = now or utcnow()
    reservations = db.query(Reservation).filter(Reservation.user_id == user_id).all()
    stored = Counter(r.status for r in reservations)
    total = len(reservations)

    categories = (
        db.query(Book.category, func.count(Reservation.id).label("cnt"))
        .join(Reservation, Reservation.book_id == Book.id)
        .filter(Reservation.user_id == user_id)
        .group_by(Book.category)
        .order_by(func.count(Reservation.id).desc())
        .limit(5)
        .all()
    )
    return {
        "user_id": user_id,
        "overall": {
            "total_reservations": total,
            "current_active": stored.get(ReservationStatus.ACTIVE, 0),
            "completed_reservations": stored.get(ReservationStatus.RETURNED, 0),
            "cancelled_reservations": stored.get(ReservationStatus.CANCELLED, 0),
        },
        "by_status": _breakdown(reservations, now),
        "favorite_categories": [
            {"category": c, "count": n, "percentage": round(n * 100.0 / total, 1)}
            for c, n in categories
        ],
        "generated_at": now,
    }


def global_statistics(db: Session, now: Optional[datetime] = None) -> Dict[str, object]:
    now = now or utcnow()
    stored = dict(
        db.query(Reservation.status, func.count(Reservation.id))
        .group_by(Reservation.status)
        .all()
    )
    holding = db.query(Reservation).filter(Reservation.status.in_(HOLDING_STATUSES)).all()
    derived = _breakdown(holding, now)

    day_start = datetime(now.year, now.month, now.day)
    returned_today = (
        db.query(func.count(Reservation.id))
        .filter(Reservation.status == ReservationStatus.RETURNED,
                Reservation.return_date >= day_start,
                Reservation.return_date < day_start + timedelta(days=1))
        .scalar()
    )
    return {
        "stats": {
            "active": derived["active"],
            "picked_up": derived["picked_up"],
            "overdue": derived["overdue"],
            "awaiting_expiry": derived["expired"],
            "returned_today": returned_today,
        },
        "by_stored_status": {s.value: stored.get(s, 0) for s in ReservationStatus},
        "generated_at": now,
    }
