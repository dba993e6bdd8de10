from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from libreserve.api.deps import Actor, get_actor
from libreserve.core.clock import utcnow
from libreserve.core.database import get_db
from libreserve.schemas import schemas
from libreserve.services.commitment import CommitmentCoordinator
from libreserve.services.reservations import ReservationStateMachine, present, present_all
from libreserve.services.stats import user_statistics

router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.post("/", response_model=schemas.ReservationOut, status_code=201)
def create_reservation(res_in: schemas.ReservationCreate, db: Session = Depends(get_db),
                       actor: Actor = Depends(get_actor)):
    reservation = ReservationStateMachine(db).create(actor.user_id, res_in.book_id, res_in.notes)
    return present(reservation, utcnow())


@router.get("/", response_model=schemas.ReservationPage)
def list_reservations(status: Optional[str] = Query(None, description="stored status, 'overdue', 'expired' or 'all'"),
                      limit: int = 20, offset: int = 0, order: str = "desc",
                      db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    now = utcnow()
    page = ReservationStateMachine(db).list_for_user(actor.user_id, status, limit, offset, order, now=now)
    page["statistics"] = user_statistics(db, actor.user_id, now)["by_status"]
    return page


@router.get("/stats", response_model=schemas.UserStatsOut)
def reservation_stats(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return user_statistics(db, actor.user_id)


@router.post("/from-basket", response_model=schemas.CommitOut, status_code=201)
def create_from_basket(commit_in: schemas.CommitRequest, db: Session = Depends(get_db),
                       actor: Actor = Depends(get_actor)):
    result = CommitmentCoordinator(db).commit_basket(actor.user_id, commit_in.notes, commit_in.clear_after)
    return {
        "message": f"{len(result.created)} reservation(s) created from basket",
        "created": present_all(result.created, utcnow()),
        "skipped": result.skipped,
    }


@router.get("/{reservation_id}", response_model=schemas.ReservationOut)
def read_reservation(reservation_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    reservation = ReservationStateMachine(db).get(reservation_id, actor.user_id, actor.is_admin)
    return present(reservation, utcnow())


@router.post("/{reservation_id}/cancel", response_model=schemas.ReservationOut)
def cancel_reservation(reservation_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    reservation = ReservationStateMachine(db).cancel(reservation_id, actor.user_id, actor.is_admin)
    return present(reservation, utcnow())


@router.patch("/{reservation_id}/notes", response_model=schemas.ReservationOut)
def update_reservation_notes(reservation_id: int, notes_in: schemas.NotesUpdate, db: Session = Depends(get_db),
                             actor: Actor = Depends(get_actor)):
    reservation = ReservationStateMachine(db).update_notes(reservation_id, actor.user_id, notes_in.notes)
    return present(reservation, utcnow())
