#!/usr/bin/env python3
"""
Seed demo data for RLS Guard Dog

Creates confirmed demo accounts with the service-role key and adds a few
classroom enrollments and progress records for the students:

- teacher@demo.com  / password123 (teacher)
- student1@demo.com / password123 (student)
- student2@demo.com / password123 (student)

Prerequisites:
- SUPABASE_URL and SUPABASE_SERVICE_KEY set in .env
- Migrations applied (scripts/apply_migrations.py)
"""

import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

load_dotenv(project_root / ".env")

from config.settings import get_settings  # noqa: E402
from models import (  # noqa: E402
    SupabaseConfigurationError,
    SupabaseOperationError,
    create_auth_user,
    create_classroom,
    create_progress,
    get_service_client,
)

logger = logging.getLogger("seed_demo")

DEMO_PASSWORD = "password123"

DEMO_ACCOUNTS = [
    {"email": "teacher@demo.com", "first_name": "Demo", "last_name": "Teacher", "role": "teacher"},
    {"email": "student1@demo.com", "first_name": "Alex", "last_name": "Student", "role": "student"},
    {"email": "student2@demo.com", "first_name": "Sam", "last_name": "Student", "role": "student"},
]

DEMO_CLASSROOMS = [
    ("student1@demo.com", "Algebra I", "9"),
    ("student1@demo.com", "Biology", "9"),
    ("student2@demo.com", "World History", "10"),
]

DEMO_PROGRESS = [
    ("student1@demo.com", "Linear equations", "completed", 92),
    ("student1@demo.com", "Cell structure", "in_progress", None),
    ("student2@demo.com", "Ancient Rome", "pending", None),
    ("student2@demo.com", "Essay outline", "completed", 78),
]


def _existing_profile_ids(client) -> dict[str, str]:
    response = client.table("profiles").select("id, email").execute()
    return {row["email"]: row["id"] for row in response.data or [] if row.get("email")}


def seed_accounts(client) -> dict[str, str]:
    """Create any missing demo account and return ids keyed by email."""
    ids = _existing_profile_ids(client)
    for account in DEMO_ACCOUNTS:
        if account["email"] in ids:
            print(f"   = {account['email']} already exists")
            continue
        user_id = create_auth_user(password=DEMO_PASSWORD, client=client, **account)
        ids[account["email"]] = user_id
        print(f"   + {account['email']} ({account['role']})")
    return ids


def seed_rows(client, ids: dict[str, str]) -> None:
    existing = client.table("progress").select("id").limit(1).execute()
    if existing.data:
        print("   = progress already seeded, skipping sample rows")
        return

    for email, class_name, grade in DEMO_CLASSROOMS:
        create_classroom(class_name=class_name, grade=grade, student_id=ids[email], client=client)
    for email, topic, status, score in DEMO_PROGRESS:
        create_progress(student_id=ids[email], topic=topic, status=status, score=score, client=client)
    print(f"   + {len(DEMO_CLASSROOMS)} classroom(s), {len(DEMO_PROGRESS)} progress record(s)")


def main() -> int:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    print("🌱 Seeding RLS Guard Dog demo data\n")
    print("=" * 60)
    try:
        client = get_service_client()
        print("👤 Accounts")
        ids = seed_accounts(client)
        print("📚 Classrooms and progress")
        seed_rows(client, ids)
    except SupabaseConfigurationError as exc:
        print(f"❌ {exc}")
        return 1
    except (SupabaseOperationError, ValueError) as exc:
        logger.error("Seeding failed: %s", exc)
        print(f"❌ Seeding failed: {exc}")
        return 1

    print("\n✅ Demo data ready. Sign in with any demo account and password123")
    return 0


if __name__ == "__main__":
    sys.exit(main())
