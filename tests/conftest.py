import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from libreserve.core.database import Base, get_db, make_engine
from libreserve.main import app
from libreserve.models.models import Book, User
from libreserve.services.users import register_user


@pytest.fixture
def engine(tmp_path):
    # one database file per test, shared by every session the test opens
    engine = make_engine(f"sqlite:///{tmp_path / 'libreserve_test.db'}", timeout=30)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(name=None, is_admin=False):
        counter["n"] += 1
        name = name or f"Reader {counter['n']}"
        user = User(name=name, email=f"{name.lower().replace(' ', '.')}.{counter['n']}@example.com",
                    is_admin=is_admin)
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def make_book(db):
    def _make_book(title="Dune", copies=1, category=None, author="Frank Herbert"):
        book = Book(title=title, author=author, category=category,
                    total_copies=copies, available_copies=copies)
        db.add(book)
        db.commit()
        return book

    return _make_book


@pytest.fixture
def add_librarian(session_factory):
    def _add_librarian(name="Librarian"):
        session = session_factory()
        try:
            return register_user(session, name, f"{name.lower()}@example.com", is_admin=True).id
        finally:
            session.close()

    return _add_librarian
