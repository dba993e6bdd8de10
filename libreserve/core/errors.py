from http import HTTPStatus
from typing import Any, Dict


class ReservationError(Exception):
    status_code = HTTPStatus.BAD_REQUEST
    code = "invalid"

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.detail}


class InvalidArgument(ReservationError):
    code = "invalid"


class Unauthenticated(ReservationError):
    status_code = HTTPStatus.UNAUTHORIZED
    code = "not_authenticated"


class Forbidden(ReservationError):
    status_code = HTTPStatus.FORBIDDEN
    code = "forbidden"


class NotFound(ReservationError):
    status_code = HTTPStatus.NOT_FOUND
    code = "not_found"


class InvalidTransition(ReservationError):
    status_code = HTTPStatus.CONFLICT
    code = "invalid_transition"


class InvalidState(ReservationError):
    status_code = HTTPStatus.CONFLICT
    code = "invalid_state"


class InsufficientStock(ReservationError):
    status_code = HTTPStatus.CONFLICT
    code = "insufficient_stock"


class BooksUnavailable(ReservationError):
    status_code = HTTPStatus.CONFLICT
    code = "books_unavailable"


class QuotaExceeded(ReservationError):
    status_code = HTTPStatus.CONFLICT
    code = "quota_exceeded"


class DuplicateActiveReservation(ReservationError):
    status_code = HTTPStatus.CONFLICT
    code = "duplicate_reservation"


class AlreadyPresent(ReservationError):
    status_code = HTTPStatus.CONFLICT
    code = "already_in_basket"


class BookUnavailable(ReservationError):
    status_code = HTTPStatus.CONFLICT
    code = "book_unavailable"


class EmptyBasket(ReservationError):
    code = "empty_basket"


class CommitFailed(ReservationError):
    status_code = HTTPStatus.CONFLICT
    code = "commit_failed"
