import logging
from typing import Dict, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from libreserve.core.clock import utcnow
from libreserve.core.database import atomic
from libreserve.core.errors import AlreadyPresent, BookUnavailable, NotFound
from libreserve.models.models import BasketItem
from libreserve.services.inventory import InventoryLedger, book_detail

logger = logging.getLogger("libreserve.basket")


class BasketStore:
    """Per-reader staging list of books. Holds no stock."""

    def __init__(self, db: Session, ledger: InventoryLedger = None) -> None:
        self.db = db
        self.ledger = ledger or InventoryLedger(db)

    def add(self, user_id: int, book_id: int) -> BasketItem:
        with atomic(self.db):
            book = self.ledger.get_book(book_id)
            # advisory only, commit re-checks
            if book.available_copies <= 0:
                raise BookUnavailable("Book is not available for reservation", **book_detail(book))
            existing = self._find(user_id, book_id)
            if existing:
                raise AlreadyPresent("Book is already in the basket", item_id=existing.id,
                                     **book_detail(book))
            item = BasketItem(user_id=user_id, book_id=book_id, added_date=utcnow())
            self.db.add(item)
            try:
                self.db.flush()
            except IntegrityError:
                raise AlreadyPresent("Book is already in the basket", **book_detail(book))
        logger.info(f"User {user_id} added book {book_id} to basket")
        return item

    def remove(self, user_id: int, book_id: int) -> None:
        with atomic(self.db):
            item = self._find(user_id, book_id)
            if not item:
                raise NotFound("Item not found in basket", resource="basket_item",
                               user_id=user_id, book_id=book_id)
            self.db.delete(item)
        logger.info(f"User {user_id} removed book {book_id} from basket")

    def clear(self, user_id: int) -> int:
        with atomic(self.db):
            removed = (
                self.db.query(BasketItem)
                .filter(BasketItem.user_id == user_id)
                .delete(synchronize_session="fetch")
            )
        if removed:
            logger.info(f"Cleared {removed} item(s) from basket of user {user_id}")
        return removed

    def list(self, user_id: int) -> List[BasketItem]:
        return (
            self.db.query(BasketItem)
            .options(joinedload(BasketItem.book))
            .filter(BasketItem.user_id == user_id)
            .order_by(BasketItem.added_date.desc(), BasketItem.id.desc())
            .all()
        )

    def check_availability(self, user_id: int) -> Dict[str, object]:
        items = self.list(user_id)
        unavailable = [i for i in items if i.book.available_copies <= 0]
        return {
            "total": len(items),
            "available": len(items) - len(unavailable),
            "unavailable": len(unavailable),
            "can_proceed_to_reservation": bool(items) and not unavailable,
            "items": [basket_entry(i) for i in items],
            "unavailable_books": [
                {"book_id": i.book_id, "title": i.book.title, "author": i.book.author}
                for i in unavailable
            ],
        }

    def _find(self, user_id: int, book_id: int):
        return (
            self.db.query(BasketItem)
            .filter(BasketItem.user_id == user_id, BasketItem.book_id == book_id)
            .first()
        )


def basket_entry(item: BasketItem) -> Dict[str, object]:
    book = item.book
    return {
        "id": item.id,
        "user_id": item.user_id,
        "book_id": item.book_id,
        "added_date": item.added_date,
        "book_title": book.title,
        "book_author": book.author,
        "available_copies": book.available_copies,
        "total_copies": book.total_copies,
        "available": book.available_copies > 0,
    }
