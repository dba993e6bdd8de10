import argparse
import logging

from libreserve.core.config import configure_logging
from libreserve.core.database import Base, SessionLocal, engine
from libreserve.models.models import Book, User
from libreserve.services.sweep import sweep_expired
from libreserve.services.users import register_user

logger = logging.getLogger("libreserve.cli")


def seed(db) -> None:
    # quick idempotent seed
    if db.query(User).count() == 0:
        db.add_all([
            User(name='Ava Librarian', email='librarian@example.com', is_admin=True),
            User(name='Alice', email='alice@example.com'),
            User(name='Bob', email='bob@example.com'),
        ])
    if db.query(Book).count() == 0:
        db.add_all([
            Book(title='Dune', author='Frank Herbert', isbn='9780441172719', category='Science Fiction',
                 total_copies=2, available_copies=2),
            Book(title='Clean Code', author='Robert C. Martin', isbn='9780132350884', category='Software',
                 total_copies=3, available_copies=3),
            Book(title='Designing Data-Intensive Applications', author='Martin Kleppmann',
                 isbn='9781449373320', category='Software', total_copies=1, available_copies=1),
        ])
    db.commit()
    logger.info('Seeded sample data')


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description='Library reservation service utilities')
    parser.add_argument('--initdb', action='store_true', help='Create tables')
    parser.add_argument('--seed', action='store_true', help='Seed sample data')
    parser.add_argument('--sweep', action='store_true', help='Expire reservations past their pickup deadline')
    parser.add_argument('--add-librarian', nargs=2, metavar=('NAME', 'EMAIL'),
                        help='Register a user with the admin role')
    args = parser.parse_args(argv)

    configure_logging()
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        if args.seed:
            seed(db)
        if args.add_librarian:
            name, email = args.add_librarian
            user = register_user(db, name, email, is_admin=True)
            print(f'Librarian {user.name} registered with id {user.id}')
        if args.sweep:
            result = sweep_expired(db)
            print(f'Expired {len(result.expired)} reservation(s), skipped {result.skipped}, '
                  f'{result.overdue} overdue')
    finally:
        db.close()
    print('Done')


if __name__ == '__main__':
    main()
