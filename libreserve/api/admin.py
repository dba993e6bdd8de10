from dataclasses import asdict
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from libreserve.api.deps import Actor, require_admin
from libreserve.core.clock import utcnow
from libreserve.core.database import get_db
from libreserve.schemas import schemas
from libreserve.services.inventory import InventoryLedger
from libreserve.services.reservations import ReservationStateMachine, present
from libreserve.services.stats import global_statistics
from libreserve.services.sweep import sweep_expired

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/reservations/", response_model=schemas.ReservationPage)
def filter_reservations(status: Optional[str] = None, user_id: Optional[int] = None,
                        book_id: Optional[int] = None, start_date: Optional[date] = None,
                        end_date: Optional[date] = None, limit: int = 50, offset: int = 0,
                        db: Session = Depends(get_db), admin: Actor = Depends(require_admin)):
    return ReservationStateMachine(db).admin_filter(status, user_id, book_id, start_date, end_date,
                                                    limit, offset)


@router.get("/reservations/stats", response_model=schemas.GlobalStatsOut)
def reservations_stats(db: Session = Depends(get_db), admin: Actor = Depends(require_admin)):
    return global_statistics(db)


@router.post("/reservations/sweep", response_model=schemas.SweepOut)
def run_sweep(db: Session = Depends(get_db), admin: Actor = Depends(require_admin)):
    return asdict(sweep_expired(db))


@router.put("/reservations/{reservation_id}/status", response_model=schemas.ReservationOut)
def update_reservation_status(reservation_id: int, status_in: schemas.StatusUpdate,
                              db: Session = Depends(get_db), admin: Actor = Depends(require_admin)):
    reservation = ReservationStateMachine(db).admin_update_status(
        reservation_id, status_in.status, admin.user_id, notes=status_in.notes)
    return present(reservation, utcnow(), with_user=True)


@router.post("/reservations/{reservation_id}/pickup", response_model=schemas.ReservationOut)
def mark_picked_up(reservation_id: int, db: Session = Depends(get_db), admin: Actor = Depends(require_admin)):
    reservation = ReservationStateMachine(db).mark_picked_up(reservation_id)
    return present(reservation, utcnow(), with_user=True)


@router.post("/reservations/{reservation_id}/return", response_model=schemas.ReservationOut)
def mark_returned(reservation_id: int, db: Session = Depends(get_db), admin: Actor = Depends(require_admin)):
    reservation = ReservationStateMachine(db).mark_returned(reservation_id)
    return present(reservation, utcnow(), with_user=True)


@router.post("/reservations/{reservation_id}/extend", response_model=schemas.ExtendOut)
def extend_deadline(reservation_id: int, extend_in: schemas.ExtendRequest,
                    db: Session = Depends(get_db), admin: Actor = Depends(require_admin)):
    machine = ReservationStateMachine(db)
    previous = machine.get(reservation_id, admin.user_id, is_admin=True).return_deadline
    reservation = machine.extend_return_deadline(reservation_id, extend_in.days)
    return {
        "reservation": present(reservation, utcnow(), with_user=True),
        "previous_deadline": previous,
        "new_deadline": reservation.return_deadline,
        "days_extended": extend_in.days,
    }


@router.get("/inventory/audit", response_model=schemas.InventoryAuditOut)
def inventory_audit(book_id: Optional[int] = None, db: Session = Depends(get_db),
                    admin: Actor = Depends(require_admin)):
    books = InventoryLedger(db).audit(book_id)
    return {"books": books, "consistent": all(b["consistent"] for b in books)}
