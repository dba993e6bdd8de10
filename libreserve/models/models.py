import enum

from sqlalchemy import (Column, Integer, String, Text, Date, DateTime, Boolean, ForeignKey, Index,
                        CheckConstraint, UniqueConstraint, Enum, text)
from sqlalchemy.orm import relationship

from libreserve.core.database import Base
from libreserve.core.clock import utcnow


class ReservationStatus(str, enum.Enum):
    ACTIVE = "active"
    PICKED_UP = "picked-up"
    RETURNED = "returned"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# statuses in which the reservation still holds a physical copy
HOLDING_STATUSES = (ReservationStatus.ACTIVE, ReservationStatus.PICKED_UP)


class Book(Base):
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("total_copies >= 0", name="ck_books_total_non_negative"),
        CheckConstraint("available_copies >= 0", name="ck_books_available_non_negative"),
        CheckConstraint("available_copies <= total_copies", name="ck_books_available_le_total"),
    )

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False, index=True)
    author = Column(String, nullable=False, index=True)
    isbn = Column(String, unique=True, index=True, nullable=True)
    category = Column(String, nullable=True, index=True)
    published_date = Column(Date, nullable=True)
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1, index=True)
    created_at = Column(DateTime, default=utcnow)

    reservations = relationship("Reservation", back_populates="book")

Index('ix_books_title_author', Book.title, Book.author)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    joined_at = Column(DateTime, default=utcnow)

    reservations = relationship("Reservation", back_populates="user")
    basket_items = relationship("BasketItem", back_populates="user")


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        # at most one active reservation per reader and title
        Index("uq_reservations_user_book_active", "user_id", "book_id", unique=True,
              sqlite_where=text("status = 'active'"),
              postgresql_where=text("status = 'active'")),
        Index("ix_reservations_status_pickup_deadline", "status", "pickup_deadline"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    status = Column(
        Enum(ReservationStatus, name="reservation_status", native_enum=False, length=16,
             values_callable=lambda statuses: [s.value for s in statuses]),
        nullable=False, default=ReservationStatus.ACTIVE, index=True,
    )
    reservation_date = Column(DateTime, nullable=False, default=utcnow)
    pickup_deadline = Column(DateTime, nullable=False)
    pickup_date = Column(DateTime, nullable=True)
    return_deadline = Column(DateTime, nullable=True)
    return_date = Column(DateTime, nullable=True)
    renewal_count = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=False, default="")

    user = relationship("User", back_populates="reservations")
    book = relationship("Book", back_populates="reservations")

    def __repr__(self) -> str:
        return f"<Reservation(id={self.id}, user={self.user_id}, book={self.book_id}, status={self.status})>"


class BasketItem(Base):
    __tablename__ = "basket_items"
    __table_args__ = (
        UniqueConstraint("user_id", "book_id", name="uq_basket_user_book"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    added_date = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="basket_items")
    book = relationship("Book")
