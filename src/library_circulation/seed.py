"""
Development data for the Library Circulation Service.

Fills an empty database with Faker-generated categories, books and members,
then runs a loan history through ``CirculationRepository`` so the loan ledger
and the availability flags agree exactly as they would in production:

- returned loans from the past months
- open loans still within their loan period
- open loans already past their due date (picked up by the overdue scanner)
"""

import argparse
import logging
import random
from dataclasses import dataclass
from datetime import timedelta

from faker import Faker
from sqlalchemy import func, select

from .config import get_config
from .database.circulation_repository import CirculationRepository
from .database.schema import Book, Category, Member
from .database.session import DatabaseManager, safe_commit
from .models.book import normalize_isbn
from .models.loan import utc_now
from .observability import configure_logging

logger = logging.getLogger(__name__)

CATEGORY_NAMES = [
    "Fiction",
    "Non-Fiction",
    "Science Fiction",
    "Fantasy",
    "Mystery",
    "Biography",
    "History",
    "Science",
    "Poetry",
    "Children",
]


@dataclass
class SeedSummary:
    categories: int = 0
    books: int = 0
    members: int = 0
    returned_loans: int = 0
    active_loans: int = 0
    overdue_loans: int = 0


def generate_categories() -> list[Category]:
    return [Category(name=name) for name in CATEGORY_NAMES]


def generate_books(
    fake: Faker, rng: random.Random, categories: list[Category], count: int
) -> list[Book]:
    """Generate books with unique ISBN-13s and one to three categories each."""
    books = []
    for _ in range(count):
        books.append(
            Book(
                title=fake.catch_phrase().title(),
                author=fake.name(),
                isbn=normalize_isbn(fake.unique.isbn13()),
                description=fake.text(max_nb_chars=400),
                available=True,
                categories=rng.sample(categories, k=rng.randint(1, 3)),
            )
        )
    return books


def generate_members(fake: Faker, rng: random.Random, count: int) -> list[Member]:
    return [
        Member(
            name=fake.name(),
            email=fake.unique.email(),
            phone=fake.phone_number()[:50] if rng.random() > 0.3 else None,
        )
        for _ in range(count)
    ]


def seed_database(
    db_manager: DatabaseManager,
    num_books: int = 60,
    num_members: int = 25,
    num_loans: int = 40,
    seed: int = 42,
    reset: bool = False,
) -> SeedSummary | None:
    """
    Seed the database.

    Returns:
        What was created, or None if the database already held books and
        ``reset`` was not requested
    """
    fake = Faker()
    Faker.seed(seed)
    rng = random.Random(seed)

    db_manager.init_database(drop_existing=reset)
    summary = SeedSummary()
    loan_period = timedelta(days=get_config().loan_period_days)

    session = db_manager.create_session()
    try:
        if session.execute(select(func.count()).select_from(Book)).scalar():
            logger.info("Database already contains books, skipping seed (use --reset)")
            return None

        categories = generate_categories()
        books = generate_books(fake, rng, categories, num_books)
        members = generate_members(fake, rng, num_members)
        session.add_all(categories + books + members)
        safe_commit(session, "seed catalog")
        summary.categories, summary.books, summary.members = (
            len(categories),
            len(books),
            len(members),
        )

        circulation = CirculationRepository(session)
        now = utc_now()
        for book in rng.sample(books, k=min(num_loans, len(books))):
            member = rng.choice(members)
            roll = rng.random()
            if roll < 0.5:
                borrowed_at = now - timedelta(days=rng.randint(30, 180))
                circulation.borrow_book(book.id, member.id, now=borrowed_at)
                circulation.return_book(
                    book.id, now=borrowed_at + timedelta(days=rng.randint(1, 20))
                )
                summary.returned_loans += 1
            elif roll < 0.8:
                borrowed_at = now - timedelta(days=rng.randint(0, loan_period.days - 1))
                circulation.borrow_book(book.id, member.id, now=borrowed_at)
                summary.active_loans += 1
            else:
                borrowed_at = now - loan_period - timedelta(days=rng.randint(1, 30))
                circulation.borrow_book(book.id, member.id, now=borrowed_at)
                summary.overdue_loans += 1
        safe_commit(session, "seed loans")
    except Exception:
        session.rollback()
        logger.exception("Seeding failed")
        raise
    finally:
        session.close()

    return summary


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Seed the library database with sample data")
    parser.add_argument("--database-url", help="Override LIBRARY_DATABASE_URL")
    parser.add_argument("--books", type=int, default=60)
    parser.add_argument("--members", type=int, default=25)
    parser.add_argument("--loans", type=int, default=40)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables first")
    args = parser.parse_args(argv)

    config = get_config()
    configure_logging(config)
    db_manager = DatabaseManager(args.database_url, config=config)

    try:
        summary = seed_database(
            db_manager,
            num_books=args.books,
            num_members=args.members,
            num_loans=args.loans,
            seed=args.seed,
            reset=args.reset,
        )
    finally:
        db_manager.close()

    if summary is None:
        print("Database already seeded. Re-run with --reset to start over.")
        return

    print("=" * 50)
    print("DATABASE SEEDING COMPLETE")
    print("=" * 50)
    print(f"Categories:    {summary.categories}")
    print(f"Books:         {summary.books}")
    print(f"Members:       {summary.members}")
    print(f"Loans:         {summary.returned_loans + summary.active_loans + summary.overdue_loans}")
    print(f"  - Returned:  {summary.returned_loans}")
    print(f"  - Active:    {summary.active_loans}")
    print(f"  - Overdue:   {summary.overdue_loans}")
    print("=" * 50)


if __name__ == "__main__":
    main()
