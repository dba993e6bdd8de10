import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from libreserve.core.config import Settings, settings as default_settings
from libreserve.core.database import atomic
from libreserve.core.errors import (BooksUnavailable, CommitFailed, EmptyBasket, QuotaExceeded,
                                    ReservationError)
from libreserve.models.models import Book, Reservation, ReservationStatus
from libreserve.services.basket import BasketStore
from libreserve.services.inventory import InventoryLedger, book_detail
from libreserve.services.reservations import ReservationStateMachine

logger = logging.getLogger("libreserve.commitment")


@dataclass
class CommitResult:
    created: List[Reservation] = field(default_factory=list)
    # books already held by an active reservation of the same reader
    skipped: List[int] = field(default_factory=list)


class CommitmentCoordinator:
    """Turns a reader's basket into reservations, all or nothing."""

    def __init__(self, db: Session, settings: Settings = None) -> None:
        self.db = db
        self.settings = settings or default_settings
        self.ledger = InventoryLedger(db)
        self.basket = BasketStore(db, self.ledger)
        self.machine = ReservationStateMachine(db, self.settings, self.ledger)

    def commit_basket(self, user_id: int, notes: Optional[str] = None, clear_after: bool = True,
                      now: Optional[datetime] = None) -> CommitResult:
        with atomic(self.db):
            items = self.basket.list(user_id)
            if not items:
                raise EmptyBasket("Basket is empty, add books before creating reservations",
                                  user_id=user_id)

            held = {
                book_id for (book_id,) in
                self.db.query(Reservation.book_id)
                .filter(Reservation.user_id == user_id, Reservation.status == ReservationStatus.ACTIVE)
                .all()
            }
            result = CommitResult(skipped=[i.book_id for i in items if i.book_id in held])
            pending = [i.book_id for i in items if i.book_id not in held]

            if pending:
                self._validate(user_id, pending)

            for book_id in pending:
                try:
                    reservation = self.machine.create(user_id, book_id, notes, now=now)
                except ReservationError as exc:
                    logger.warning(
                        f"Basket commit for user {user_id} failed on book {book_id} ({exc.code}); "
                        f"rolling back {len(result.created)} reservation(s)"
                    )
                    raise CommitFailed(
                        f"Could not reserve book {book_id}, no reservations were created",
                        failed_book_id=book_id,
                        reason=exc.code,
                        reason_detail=exc.to_dict(),
                        rolled_back=len(result.created),
                    ) from exc
                result.created.append(reservation)

            if clear_after:
                self.basket.clear(user_id)

        logger.info(
            f"Basket of user {user_id} committed: {len(result.created)} created, "
            f"{len(result.skipped)} skipped"
        )
        return result

    def _validate(self, user_id: int, book_ids: List[int]) -> None:
        books = (
            self.db.query(Book)
            .filter(Book.id.in_(book_ids))
            .populate_existing()
            .all()
        )
        unavailable = [book_detail(b) for b in books if b.available_copies <= 0]
        if unavailable:
            raise BooksUnavailable(
                f"{len(unavailable)} book(s) in the basket are no longer available",
                unavailable_books=unavailable,
            )

        current_active = self.machine.count_active(user_id)
        limit = self.settings.max_active_reservations
        if current_active + len(book_ids) > limit:
            raise QuotaExceeded(
                f"Creating these reservations would exceed the limit of {limit} simultaneous reservations",
                current_active=current_active,
                requested=len(book_ids),
                max_allowed=limit,
            )
