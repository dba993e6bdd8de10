import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from libreserve.api.deps import Actor, require_admin
from libreserve.core.database import atomic, get_db
from libreserve.core.errors import InvalidArgument, NotFound
from libreserve.models import models
from libreserve.schemas import schemas
from libreserve.services.inventory import InventoryLedger
from libreserve.services.users import register_user

logger = logging.getLogger("libreserve.api")

router = APIRouter(tags=["catalog"])


def _ensure_unique_isbn(db: Session, isbn: Optional[str], book_id: Optional[int] = None):
    if not isbn:
        return
    clash = db.query(models.Book.id).filter(models.Book.isbn == isbn)
    if book_id is not None:
        clash = clash.filter(models.Book.id != book_id)
    if clash.first():
        raise InvalidArgument("ISBN already exists", isbn=isbn)


@router.post("/books/", response_model=schemas.BookOut)
def create_book(book_in: schemas.BookCreate, db: Session = Depends(get_db),
                admin: Actor = Depends(require_admin)):
    with atomic(db):
        _ensure_unique_isbn(db, book_in.isbn)
        fields = book_in.model_dump()
        fields["title"], fields["author"] = book_in.title.strip(), book_in.author.strip()
        # a new title starts with every copy on the shelf
        book = models.Book(available_copies=book_in.total_copies, **fields)
        db.add(book)
    logger.info(f"Book {book.id} '{book.title}' added with {book.total_copies} copies by admin {admin.user_id}")
    return book


@router.get("/books/", response_model=List[schemas.BookOut])
def search_books(q: Optional[str] = Query(None, description="matches title or author"),
                 category: Optional[str] = None, available_only: bool = False,
                 skip: int = 0, limit: int = Query(20, le=100), db: Session = Depends(get_db)):
    books = db.query(models.Book)
    if q:
        pattern = f"%{q}%"
        books = books.filter(models.Book.title.ilike(pattern) | models.Book.author.ilike(pattern))
    if category:
        books = books.filter(models.Book.category == category)
    if available_only:
        books = books.filter(models.Book.available_copies > 0)
    return books.order_by(models.Book.title, models.Book.id).offset(skip).limit(limit).all()


@router.get("/books/{book_id}", response_model=schemas.BookOut)
def read_book(book_id: int, db: Session = Depends(get_db)):
    return InventoryLedger(db).get_book(book_id)


@router.put("/books/{book_id}", response_model=schemas.BookOut)
def update_book(book_id: int, book_upd: schemas.BookUpdate, db: Session = Depends(get_db),
                admin: Actor = Depends(require_admin)):
    ledger = InventoryLedger(db)
    changes = book_upd.model_dump(exclude_unset=True)
    total = changes.pop("total_copies", None)
    with atomic(db):
        book = ledger.get_book(book_id, lock=True)
        _ensure_unique_isbn(db, changes.get("isbn"), book_id)
        # copies only change through the ledger
        if total is not None:
            book = ledger.set_total_copies(book_id, total)
        for name, value in changes.items():
            setattr(book, name, value)
    db.refresh(book)
    logger.info(f"Book {book.id} updated by admin {admin.user_id}: {sorted(book_upd.model_fields_set)}")
    return book


@router.post("/users/", response_model=schemas.UserOut)
def create_user(user_in: schemas.UserCreate, db: Session = Depends(get_db)):
    # self-registration always makes a reader; librarians come from the cli
    return register_user(db, user_in.name, user_in.email)


@router.get("/users/{user_id}", response_model=schemas.UserOut)
def read_user(user_id: int, db: Session = Depends(get_db)):
    user = db.get(models.User, user_id)
    if user is None:
        raise NotFound("User not found", resource="user", user_id=user_id)
    return user
