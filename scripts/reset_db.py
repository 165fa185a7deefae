#!/usr/bin/env python3
"""Script to reset the reference server's database.

Usage:
  python scripts/reset_db.py [--force] [--seed N] [--user USER_ID]
"""

import argparse
import os
import sys
from pathlib import Path

# Add project root to sys.path so we can import project packages
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

from devserver.core.database import Base, create_chat_session, get_engine, init_db, save_exchange
from devserver.core.responder import respond

SAMPLE_QUESTIONS = [
    "I have had a headache since this morning",
    "How do I book an appointment?",
    "I have a fever and chills",
    "Can I take my medication with food?",
    "My cough won't go away",
]


def reset_sqlite(force: bool) -> bool:
    """Drop and recreate SQLite tables."""
    print("🧊 Resetting SQLite database...")
    if not force:
        confirm = input("  This will delete all chat sessions and messages. Continue? [y/N]: ")
        if confirm.lower() != 'y':
            print("  Skipping SQLite reset.")
            return False

    db_url = os.environ.get("DATABASE_URL", "sqlite:///data/carechat.sqlite")
    init_db(db_url)

    engine = get_engine()
    if engine is None:
        print("  ❌ Failed to initialize SQLite engine.")
        return False

    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    print("  ✅ SQLite tables dropped and recreated.")
    return True


def seed_sessions(user_id: str, count: int):
    """Create sample conversations so the history view has pages to scroll."""
    print(f"🌱 Seeding {count} conversations for {user_id}...")
    for i in range(count):
        session = create_chat_session(user_id, f"Conversation {i + 1}")
        question = SAMPLE_QUESTIONS[i % len(SAMPLE_QUESTIONS)]
        save_exchange(session.id, question, respond(question))
    print("  ✅ Seeded.")


def main():
    parser = argparse.ArgumentParser(description="Reset the CareChat reference database.")
    parser.add_argument("--force", "-f", action="store_true", help="Skip confirmation prompts")
    parser.add_argument("--seed", type=int, default=0, help="Create N sample conversations after reset")
    parser.add_argument("--user", default="patient-1", help="Owner of seeded conversations")
    args = parser.parse_args()

    # Load environment variables
    load_dotenv(project_root / ".env")

    print("\n⚠️ WARNING: Database Reset ⚠️\n")

    if reset_sqlite(args.force) and args.seed > 0:
        seed_sessions(args.user, args.seed)
        print("")

    print("✅ Done!")


if __name__ == "__main__":
    main()
