"""
Provision students from a CSV file (or the sample student).

CSV columns: student_id, name, email (email optional).

Usage:
    python -m scripts.seed_students students.csv
    python -m scripts.seed_students            # seeds sample student '123'
"""

import argparse
import asyncio
import csv
import sys
from collections.abc import Iterable

from alcovia.config import settings
from alcovia.core.database import close_db, create_tables, get_sessionmaker, init_db
from alcovia.core.models import Student, StudentStatus
from alcovia.core.validation import ValidationError, validate_student_id
from alcovia.intervention import store

SAMPLE_STUDENTS = [
    {"student_id": "123", "name": "Test Student", "email": "student@test.com"},
]


def read_csv(csv_file: str) -> list[dict[str, str]]:
    with open(csv_file, encoding="utf-8") as f:
        return list(csv.DictReader(f))


async def seed_students(rows: Iterable[dict[str, str]]) -> int:
    """Insert students that do not exist yet.

    Args:
        rows: Mappings with student_id, name and optional email

    Returns:
        Number of students created
    """
    count = 0
    async with get_sessionmaker()() as db:
        for row in rows:
            try:
                student_id = validate_student_id(row.get("student_id"))
            except ValidationError as e:
                print(f"Skipping invalid row {row}: {e}")
                continue

            if await store.find_student(db, student_id):
                print(f"Skipping duplicate: {student_id}")
                continue

            db.add(
                Student(
                    student_id=student_id,
                    name=row["name"].strip(),
                    email=(row.get("email") or "").strip() or None,
                    status=StudentStatus.ACTIVE.value,
                )
            )
            count += 1

            if count % 50 == 0:
                print(f"Seeded {count} students...")
                await db.commit()

        await db.commit()

    print(f"\n✅ Successfully seeded {count} students!")
    return count


async def main() -> None:
    parser = argparse.ArgumentParser(description="Provision students in the database")
    parser.add_argument("csv_file", nargs="?", help="CSV with student_id,name,email columns")
    args = parser.parse_args()

    rows = read_csv(args.csv_file) if args.csv_file else SAMPLE_STUDENTS

    await init_db(settings.DATABASE_URL)
    try:
        await create_tables()
        await seed_students(rows)
    except Exception as e:
        print(f"❌ Error: {e}")
        sys.exit(1)
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
