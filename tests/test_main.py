from libreserve.core.config import settings


def as_user(user_id):
    return {"X-User-Id": str(user_id)}


def register(client, name):
    r = client.post("/users/", json={"name": name, "email": f"{name.lower()}@example.com"})
    assert r.status_code == 200
    return r.json()["id"]


def add_book(client, admin_id, title="Dune", copies=1, **extra):
    r = client.post("/books/", json={"title": title, "author": "Frank Herbert", "total_copies": copies, **extra},
                    headers=as_user(admin_id))
    assert r.status_code == 200
    return r.json()["id"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_catalog_is_managed_by_librarians(client, add_librarian):
    admin = add_librarian()
    reader = register(client, "Alice")

    book_id = add_book(client, admin, isbn="9780441172719", category="Science Fiction")
    r = client.get(f"/books/{book_id}")
    assert r.json()["available_copies"] == 1

    r = client.post("/books/", json={"title": "Emma", "author": "Jane Austen"}, headers=as_user(reader))
    assert r.status_code == 403
    assert r.json()["code"] == "forbidden"

    r = client.post("/books/", json={"title": "Emma", "author": "Jane Austen"})
    assert r.status_code == 401
    assert r.json()["code"] == "not_authenticated"

    r = client.post("/books/", json={"title": "Dune", "author": "Frank Herbert", "isbn": "9780441172719"},
                    headers=as_user(admin))
    assert r.status_code == 400

    r = client.put(f"/books/{book_id}", json={"total_copies": 3, "category": "Classic"}, headers=as_user(admin))
    assert r.status_code == 200
    assert (r.json()["total_copies"], r.json()["available_copies"]) == (3, 3)
    assert r.json()["category"] == "Classic"

    r = client.get("/books/424242")
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


def test_reserve_cancel_and_reserve_again(client, add_librarian):
    admin = add_librarian()
    alice, bob = register(client, "Alice"), register(client, "Bob")
    book_id = add_book(client, admin)

    r = client.post("/reservations/", json={"book_id": book_id, "notes": "morning pickup"}, headers=as_user(alice))
    assert r.status_code == 201
    reservation = r.json()
    assert reservation["status"] == "active"
    assert reservation["calculated_status"] == "active"
    assert reservation["book_title"] == "Dune"
    assert client.get(f"/books/{book_id}").json()["available_copies"] == 0

    r = client.post("/reservations/", json={"book_id": book_id}, headers=as_user(bob))
    assert r.status_code == 409
    body = r.json()
    assert body["code"] == "insufficient_stock"
    assert body["available_copies"] == 0
    assert body["book_id"] == book_id

    r = client.post("/reservations/", json={"book_id": book_id}, headers=as_user(alice))
    assert r.status_code == 409
    assert r.json()["code"] == "duplicate_reservation"

    r = client.get(f"/reservations/{reservation['id']}", headers=as_user(bob))
    assert r.status_code == 403
    r = client.post(f"/reservations/{reservation['id']}/cancel", headers=as_user(bob))
    assert r.status_code == 403

    r = client.post(f"/reservations/{reservation['id']}/cancel", headers=as_user(alice))
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    assert r.json()["hours_remaining"] is None
    assert client.get(f"/books/{book_id}").json()["available_copies"] == 1

    r = client.post(f"/reservations/{reservation['id']}/cancel", headers=as_user(alice))
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_transition"

    r = client.post("/reservations/", json={"book_id": book_id}, headers=as_user(bob))
    assert r.status_code == 201


def test_list_reservations_with_statistics(client, add_librarian):
    admin = add_librarian()
    alice = register(client, "Alice")
    dune = add_book(client, admin, "Dune")
    emma = add_book(client, admin, "Emma")
    first = client.post("/reservations/", json={"book_id": dune}, headers=as_user(alice)).json()
    client.post("/reservations/", json={"book_id": emma}, headers=as_user(alice))
    client.post(f"/reservations/{first['id']}/cancel", headers=as_user(alice))

    r = client.get("/reservations/", headers=as_user(alice))
    assert r.status_code == 200
    page = r.json()
    assert page["pagination"]["total"] == 2
    assert page["statistics"]["active"] == 1
    assert page["statistics"]["cancelled"] == 1

    r = client.get("/reservations/?status=cancelled", headers=as_user(alice))
    assert [x["id"] for x in r.json()["reservations"]] == [first["id"]]

    r = client.get("/reservations/?status=lost", headers=as_user(alice))
    assert r.status_code == 400
    assert r.json()["code"] == "invalid"

    r = client.patch(f"/reservations/{first['id']}/notes", json={"notes": "never mind"}, headers=as_user(alice))
    assert r.json()["notes"] == "never mind"

    r = client.get("/reservations/stats", headers=as_user(alice))
    assert r.json()["overall"]["total_reservations"] == 2


def test_basket_to_reservations(client, add_librarian):
    admin = add_librarian()
    alice, bob = register(client, "Alice"), register(client, "Bob")
    dune = add_book(client, admin, "Dune", copies=2)
    emma = add_book(client, admin, "Emma", copies=1)
    basket = f"/users/{alice}/basket"

    assert client.post(basket, json={"book_id": dune}, headers=as_user(alice)).status_code == 201
    assert client.post(basket, json={"book_id": emma}, headers=as_user(alice)).status_code == 201
    r = client.post(basket, json={"book_id": emma}, headers=as_user(alice))
    assert r.status_code == 409
    assert r.json()["code"] == "already_in_basket"

    r = client.get(basket, headers=as_user(bob))
    assert r.status_code == 403

    r = client.get(basket, headers=as_user(alice))
    assert r.json()["summary"] == {"total_items": 2, "available_items": 2, "unavailable_items": 0}
    # basket holds no stock
    assert client.get(f"/books/{emma}").json()["available_copies"] == 1

    r = client.get(f"{basket}/availability", headers=as_user(alice))
    assert r.json()["can_proceed_to_reservation"] is True

    r = client.post("/reservations/from-basket", json={}, headers=as_user(alice))
    assert r.status_code == 201
    assert sorted(x["book_id"] for x in r.json()["created"]) == sorted([dune, emma])
    assert client.get(basket, headers=as_user(alice)).json()["total"] == 0
    assert client.get(f"/books/{emma}").json()["available_copies"] == 0

    r = client.post("/reservations/from-basket", json={}, headers=as_user(alice))
    assert r.status_code == 400
    assert r.json()["code"] == "empty_basket"


def test_basket_commit_reports_unavailable_books(client, add_librarian):
    admin = add_librarian()
    alice, bob = register(client, "Alice"), register(client, "Bob")
    emma = add_book(client, admin, "Emma", copies=1)
    client.post(f"/users/{alice}/basket", json={"book_id": emma}, headers=as_user(alice))
    client.post("/reservations/", json={"book_id": emma}, headers=as_user(bob))

    r = client.post("/reservations/from-basket", json={}, headers=as_user(alice))
    assert r.status_code == 409
    assert r.json()["code"] == "books_unavailable"
    assert r.json()["unavailable_books"][0]["book_id"] == emma

    r = client.delete(f"/users/{alice}/basket/{emma}", headers=as_user(alice))
    assert r.status_code == 204
    r = client.delete(f"/users/{alice}/basket/{emma}", headers=as_user(alice))
    assert r.status_code == 404


def test_librarian_desk_flow(client, add_librarian):
    admin = add_librarian()
    alice = register(client, "Alice")
    book_id = add_book(client, admin)
    reservation_id = client.post("/reservations/", json={"book_id": book_id}, headers=as_user(alice)).json()["id"]

    r = client.post(f"/admin/reservations/{reservation_id}/pickup", headers=as_user(alice))
    assert r.status_code == 403

    r = client.put(f"/admin/reservations/{reservation_id}/status", json={"status": "returned"},
                   headers=as_user(admin))
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_transition"

    r = client.post(f"/admin/reservations/{reservation_id}/extend", json={"days": 7}, headers=as_user(admin))
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_state"

    r = client.post(f"/admin/reservations/{reservation_id}/pickup", headers=as_user(admin))
    assert r.status_code == 200
    assert r.json()["status"] == "picked-up"
    assert r.json()["user_name"] == "Alice"

    r = client.post(f"/admin/reservations/{reservation_id}/extend", json={"days": 7}, headers=as_user(admin))
    assert r.status_code == 200
    assert r.json()["days_extended"] == 7
    assert r.json()["reservation"]["renewal_count"] == 1

    r = client.post(f"/admin/reservations/{reservation_id}/return", headers=as_user(admin))
    assert r.status_code == 200
    assert r.json()["status"] == "returned"
    assert client.get(f"/books/{book_id}").json()["available_copies"] == 1

    r = client.get("/admin/reservations/?status=returned", headers=as_user(admin))
    assert r.json()["pagination"]["total"] == 1

    r = client.get("/admin/reservations/stats", headers=as_user(admin))
    assert r.json()["stats"]["returned_today"] == 1

    r = client.get("/admin/inventory/audit", headers=as_user(admin))
    assert r.json()["consistent"] is True

    r = client.post("/admin/reservations/sweep", headers=as_user(admin))
    assert r.status_code == 200
    assert r.json()["expired"] == []


def test_self_registration_never_grants_the_admin_role(client):
    r = client.post("/users/", json={"name": "Mallory", "email": "mallory@example.com", "is_admin": True})
    assert r.status_code == 200
    assert r.json()["is_admin"] is False

    r = client.post("/books/", json={"title": "Emma", "author": "Jane Austen"}, headers=as_user(r.json()["id"]))
    assert r.status_code == 403
    assert r.json()["code"] == "forbidden"


def test_book_update_rejects_null_and_blank_fields(client, add_librarian):
    admin = add_librarian()
    book_id = add_book(client, admin)

    for body in ({"title": None}, {"author": None}, {"total_copies": None}, {"title": ""}):
        r = client.put(f"/books/{book_id}", json=body, headers=as_user(admin))
        assert r.status_code == 422

    r = client.put(f"/books/{book_id}", json={"isbn": None, "title": "Dune Messiah"}, headers=as_user(admin))
    assert r.status_code == 200
    assert r.json()["title"] == "Dune Messiah"
    assert r.json()["author"] == "Frank Herbert"


def test_http_limits_follow_settings(client, add_librarian, monkeypatch):
    admin = add_librarian()
    alice = register(client, "Alice")
    book_id = add_book(client, admin)

    r = client.post("/reservations/", json={"book_id": book_id, "notes": "x" * 600}, headers=as_user(alice))
    assert r.status_code == 400
    assert r.json()["code"] == "invalid"

    monkeypatch.setattr(settings, "notes_max_length", 1000)
    r = client.post("/reservations/", json={"book_id": book_id, "notes": "x" * 600}, headers=as_user(alice))
    assert r.status_code == 201
    reservation_id = r.json()["id"]
    client.post(f"/admin/reservations/{reservation_id}/pickup", headers=as_user(admin))

    r = client.post(f"/admin/reservations/{reservation_id}/extend", json={"days": 45}, headers=as_user(admin))
    assert r.status_code == 400
    assert r.json()["code"] == "invalid"

    monkeypatch.setattr(settings, "max_extension_days", 60)
    r = client.post(f"/admin/reservations/{reservation_id}/extend", json={"days": 45}, headers=as_user(admin))
    assert r.status_code == 200
    assert r.json()["days_extended"] == 45
