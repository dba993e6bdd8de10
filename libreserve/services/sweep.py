import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from libreserve.core.clock import utcnow
from libreserve.core.config import Settings
from libreserve.core.errors import InvalidTransition, NotFound
from libreserve.models.models import Reservation, ReservationStatus
from libreserve.services import deadlines
from libreserve.services.reservations import ReservationStateMachine, status_filter

logger = logging.getLogger("libreserve.sweep")


@dataclass
class SweepResult:
    expired: List[int] = field(default_factory=list)
    # already moved by someone else between the scan and the transition
    skipped: int = 0
    overdue: int = 0
    ran_at: Optional[datetime] = None


def sweep_expired(db: Session, now: Optional[datetime] = None, settings: Settings = None) -> SweepResult:
    now = now or utcnow()
    machine = ReservationStateMachine(db, settings)
    result = SweepResult(ran_at=now)

    candidates = [
        reservation_id for (reservation_id,) in
        db.query(Reservation.id)
        .filter(Reservation.status == ReservationStatus.ACTIVE,
                Reservation.pickup_date.is_(None),
                Reservation.pickup_deadline < now)
        .order_by(Reservation.pickup_deadline)
        .all()
    ]
    # end the scan's transaction, every expiry opens its own
    db.commit()

    for reservation_id in candidates:
        try:
            machine.expire(reservation_id, now=now)
        except (InvalidTransition, NotFound):
            result.skipped += 1
            continue
        result.expired.append(reservation_id)

    result.overdue = (
        db.query(Reservation.id).filter(status_filter(deadlines.OVERDUE, now)).count()
    )
    db.commit()
    if result.expired or result.skipped:
        logger.info(
            f"Expiry sweep: {len(result.expired)} expired, {result.skipped} skipped, "
            f"{result.overdue} overdue"
        )
    return result
