import pytest

from libreserve.core.errors import BooksUnavailable, CommitFailed, EmptyBasket, InsufficientStock, QuotaExceeded
from libreserve.models.models import Reservation, ReservationStatus
from libreserve.services.basket import BasketStore
from libreserve.services.commitment import CommitmentCoordinator
from libreserve.services.inventory import InventoryLedger
from libreserve.services.reservations import ReservationStateMachine


def available(db, book_id):
    return InventoryLedger(db).snapshot(book_id)["available_copies"]


def fill_basket(db, user, books):
    basket = BasketStore(db)
    for book in books:
        basket.add(user.id, book.id)
    return basket


def test_commit_creates_one_reservation_per_item_and_clears(db, make_user, make_book):
    user = make_user()
    books = [make_book(f"Title {i}", copies=2) for i in range(3)]
    basket = fill_basket(db, user, books)

    result = CommitmentCoordinator(db).commit_basket(user.id, notes="weekend reading")

    assert sorted(r.book_id for r in result.created) == sorted(b.id for b in books)
    assert all(r.status == ReservationStatus.ACTIVE for r in result.created)
    assert all(r.notes == "weekend reading" for r in result.created)
    assert result.skipped == []
    assert basket.list(user.id) == []
    assert [available(db, b.id) for b in books] == [1, 1, 1]


def test_commit_can_keep_the_basket(db, make_user, make_book):
    user = make_user()
    basket = fill_basket(db, user, [make_book(copies=2)])
    CommitmentCoordinator(db).commit_basket(user.id, clear_after=False)
    assert len(basket.list(user.id)) == 1


def test_empty_basket(db, make_user):
    user = make_user()
    with pytest.raises(EmptyBasket):
        CommitmentCoordinator(db).commit_basket(user.id)


def test_quota_is_checked_for_the_whole_batch(db, make_user, make_book):
    user = make_user()
    machine = ReservationStateMachine(db)
    for i in range(3):
        machine.create(user.id, make_book(f"Held {i}").id)
    wanted = [make_book(f"Wanted {i}") for i in range(3)]
    basket = fill_basket(db, user, wanted)

    with pytest.raises(QuotaExceeded) as exc:
        CommitmentCoordinator(db).commit_basket(user.id)

    assert exc.value.detail == {"current_active": 3, "requested": 3, "max_allowed": 5}
    assert machine.count_active(user.id) == 3
    assert len(basket.list(user.id)) == 3
    assert all(available(db, b.id) == 1 for b in wanted)


def test_unavailable_items_block_the_whole_commit(db, make_user, make_book):
    user, other = make_user(), make_user()
    dune, emma = make_book("Dune"), make_book("Emma")
    basket = fill_basket(db, user, [dune, emma])
    # someone else takes the last copy after it was basketed
    ReservationStateMachine(db).create(other.id, emma.id)

    with pytest.raises(BooksUnavailable) as exc:
        CommitmentCoordinator(db).commit_basket(user.id)

    assert [b["book_id"] for b in exc.value.detail["unavailable_books"]] == [emma.id]
    assert available(db, dune.id) == 1
    assert len(basket.list(user.id)) == 2
    assert db.query(Reservation).filter(Reservation.user_id == user.id).count() == 0


def test_books_already_reserved_are_skipped(db, make_user, make_book):
    user = make_user()
    dune, emma = make_book("Dune", copies=2), make_book("Emma", copies=2)
    basket = fill_basket(db, user, [dune, emma])
    ReservationStateMachine(db).create(user.id, dune.id)

    result = CommitmentCoordinator(db).commit_basket(user.id)

    assert result.skipped == [dune.id]
    assert [r.book_id for r in result.created] == [emma.id]
    assert available(db, dune.id) == 1
    assert basket.list(user.id) == []


def test_late_failure_rolls_back_the_batch(db, make_user, make_book, monkeypatch):
    user = make_user()
    books = [make_book(f"Title {i}", copies=1) for i in range(3)]
    basket = fill_basket(db, user, books)
    lost = books[0].id
    original = InventoryLedger.reserve

    def reserve(self, book_id):
        # the copy goes to another session between validation and creation
        if book_id == lost:
            raise InsufficientStock("No copies available", book_id=book_id)
        return original(self, book_id)

    monkeypatch.setattr(InventoryLedger, "reserve", reserve)

    with pytest.raises(CommitFailed) as exc:
        CommitmentCoordinator(db).commit_basket(user.id)

    assert exc.value.detail["failed_book_id"] == lost
    assert exc.value.detail["reason"] == "insufficient_stock"
    # basket lists newest first, so the other two were created before the failure
    assert exc.value.detail["rolled_back"] == 2
    assert db.query(Reservation).count() == 0
    assert [available(db, b.id) for b in books] == [1, 1, 1]
    assert len(basket.list(user.id)) == 3
