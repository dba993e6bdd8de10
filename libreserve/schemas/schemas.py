from pydantic import BaseModel, ConfigDict, Field, constr, field_validator
from datetime import date, datetime
from typing import Any, Dict, List, Optional

class BookBase(BaseModel):
    title: constr(min_length=1)
    author: constr(min_length=1)
    isbn: Optional[str] = None
    category: Optional[str] = None
    published_date: Optional[date] = None
    total_copies: int = Field(default=1, ge=0)

    @field_validator('total_copies')
    @classmethod
    def ensure_non_negative_copies(cls, v):
        if v < 0:
            raise ValueError('total_copies must be >= 0')
        return v

class BookCreate(BookBase):
    pass

class BookUpdate(BaseModel):
    title: Optional[constr(min_length=1)] = None
    author: Optional[constr(min_length=1)] = None
    isbn: Optional[str] = None
    category: Optional[str] = None
    published_date: Optional[date] = None
    total_copies: Optional[int] = Field(default=None, ge=0)

    # omitted fields stay as they are; an explicit null is not a value for these
    @field_validator('title', 'author', 'total_copies')
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f'{info.field_name} cannot be null')
        return v

class BookOut(BookBase):
    model_config = ConfigDict(from_attributes=True)
    id: int
    available_copies: int
    created_at: datetime

class UserBase(BaseModel):
    name: constr(min_length=1)
    email: constr(min_length=5)

class UserCreate(UserBase):
    pass

class UserOut(UserBase):
    model_config = ConfigDict(from_attributes=True)
    id: int
    is_admin: bool
    joined_at: datetime

# -----------------------------
# Basket
# -----------------------------
class BasketAdd(BaseModel):
    book_id: int = Field(gt=0)

class BasketItemOut(BaseModel):
    id: int
    user_id: int
    book_id: int
    added_date: datetime
    book_title: str
    book_author: str
    available_copies: int
    total_copies: int
    available: bool

class BasketSummary(BaseModel):
    total_items: int
    available_items: int
    unavailable_items: int

class BasketOut(BaseModel):
    user_id: int
    items: List[BasketItemOut]
    total: int
    summary: BasketSummary

class BasketClearOut(BaseModel):
    removed: int

class UnavailableBook(BaseModel):
    book_id: int
    title: str
    author: str

class BasketAvailabilityOut(BaseModel):
    total: int
    available: int
    unavailable: int
    can_proceed_to_reservation: bool
    items: List[BasketItemOut]
    unavailable_books: List[UnavailableBook]

# -----------------------------
# Reservations
# -----------------------------
class ReservationCreate(BaseModel):
    book_id: int = Field(gt=0)
    notes: Optional[str] = None

class NotesUpdate(BaseModel):
    notes: Optional[str] = None

class CommitRequest(BaseModel):
    notes: Optional[str] = None
    clear_after: bool = True

class StatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = None

class ExtendRequest(BaseModel):
    days: int = 7

class ReservationOut(BaseModel):
    id: int
    user_id: int
    book_id: int
    status: str
    calculated_status: str
    hours_remaining: Optional[int] = None
    reservation_date: datetime
    pickup_deadline: datetime
    pickup_date: Optional[datetime] = None
    return_deadline: Optional[datetime] = None
    return_date: Optional[datetime] = None
    renewal_count: int
    notes: str
    book_title: Optional[str] = None
    book_author: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None

class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_next: bool
    has_prev: bool
    showing: int

class StatusBreakdown(BaseModel):
    active: int
    picked_up: int
    returned: int
    cancelled: int
    expired: int
    overdue: int

class ReservationPage(BaseModel):
    reservations: List[ReservationOut]
    pagination: Pagination
    filters: Dict[str, Any]
    statistics: Optional[StatusBreakdown] = None

class CommitOut(BaseModel):
    message: str
    created: List[ReservationOut]
    skipped: List[int]

class ExtendOut(BaseModel):
    reservation: ReservationOut
    previous_deadline: datetime
    new_deadline: datetime
    days_extended: int

class OverallStats(BaseModel):
    total_reservations: int
    current_active: int
    completed_reservations: int
    cancelled_reservations: int

class CategoryShare(BaseModel):
    category: Optional[str] = None
    count: int
    percentage: float

class UserStatsOut(BaseModel):
    user_id: int
    overall: OverallStats
    by_status: StatusBreakdown
    favorite_categories: List[CategoryShare]
    generated_at: datetime

class GlobalCounts(BaseModel):
    active: int
    picked_up: int
    overdue: int
    awaiting_expiry: int
    returned_today: int

class GlobalStatsOut(BaseModel):
    stats: GlobalCounts
    by_stored_status: Dict[str, int]
    generated_at: datetime

class SweepOut(BaseModel):
    expired: List[int]
    skipped: int
    overdue: int
    ran_at: datetime

class InventoryAuditEntry(BaseModel):
    book_id: int
    title: str
    available_copies: int
    total_copies: int
    held_copies: int
    expected_available: int
    consistent: bool

class InventoryAuditOut(BaseModel):
    books: List[InventoryAuditEntry]
    consistent: bool
