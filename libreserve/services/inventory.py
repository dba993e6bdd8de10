import logging
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from libreserve.core.errors import InsufficientStock, InvalidArgument, NotFound
from libreserve.models.models import Book, Reservation, HOLDING_STATUSES

logger = logging.getLogger("libreserve.inventory")
integrity_logger = logging.getLogger("libreserve.integrity")


def book_detail(book: Book) -> Dict[str, object]:
    return {
        "book_id": book.id,
        "title": book.title,
        "available_copies": book.available_copies,
        "total_copies": book.total_copies,
    }


class InventoryLedger:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_book(self, book_id: int, lock: bool = False) -> Book:
        query = self.db.query(Book).filter(Book.id == book_id)
        if lock:
            query = query.with_for_update()
        book = query.populate_existing().first()
        if not book:
            raise NotFound("Book not found", resource="book", book_id=book_id)
        return book

    def snapshot(self, book_id: int) -> Dict[str, object]:
        return book_detail(self.get_book(book_id))

    def reserve(self, book_id: int) -> None:
        """Take one copy of ``book_id`` or raise ``InsufficientStock``."""
        updated = (
            self.db.query(Book)
            .filter(Book.id == book_id, Book.available_copies > 0)
            .update({"available_copies": Book.available_copies - 1}, synchronize_session="fetch")
        )
        if not updated:
            book = self.get_book(book_id)
            raise InsufficientStock("No copies available", **book_detail(book))
        logger.debug(f"Reserved one copy of book {book_id}")

    def release(self, book_id: int) -> bool:
        # clamped at total_copies; a clamp means a copy was released twice
        updated = (
            self.db.query(Book)
            .filter(Book.id == book_id, Book.available_copies < Book.total_copies)
            .update({"available_copies": Book.available_copies + 1}, synchronize_session="fetch")
        )
        if updated:
            logger.debug(f"Released one copy of book {book_id}")
            return True
        book = self.get_book(book_id)
        integrity_logger.warning(
            f"Release of book {book_id} clamped: available_copies={book.available_copies} "
            f"total_copies={book.total_copies}"
        )
        return False

    def set_total_copies(self, book_id: int, total: int) -> Book:
        """Resize a title; available copies move by the same delta, kept in [0, total]."""
        if total < 0:
            raise InvalidArgument("total_copies must be >= 0", book_id=book_id, total_copies=total)
        book = self.get_book(book_id, lock=True)
        delta = total - book.total_copies
        book.available_copies = min(total, max(0, book.available_copies + delta))
        book.total_copies = total
        self.db.flush()
        logger.info(f"Book {book_id} resized to {total} copies ({book.available_copies} available)")
        return book

    def audit(self, book_id: Optional[int] = None) -> List[Dict[str, object]]:
        """Compare each counter with the copies actually held by reservations."""
        held_query = (
            self.db.query(Reservation.book_id, func.count(Reservation.id))
            .filter(Reservation.status.in_(HOLDING_STATUSES))
            .group_by(Reservation.book_id)
        )
        books_query = self.db.query(Book).order_by(Book.id)
        if book_id is not None:
            held_query = held_query.filter(Reservation.book_id == book_id)
            books_query = books_query.filter(Book.id == book_id)
        held = dict(held_query.all())

        report = []
        for book in books_query.all():
            expected = book.total_copies - held.get(book.id, 0)
            entry = {
                **book_detail(book),
                "held_copies": held.get(book.id, 0),
                "expected_available": expected,
                "consistent": expected == book.available_copies,
            }
            if not entry["consistent"]:
                integrity_logger.warning(
                    f"Inventory drift on book {book.id}: available_copies={book.available_copies} "
                    f"expected={expected}"
                )
            report.append(entry)
        if book_id is not None and not report:
            raise NotFound("Book not found", resource="book", book_id=book_id)
        return report
