#!/usr/bin/env python3
"""Initialize the database and create tables."""

import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from dotenv import load_dotenv

load_dotenv(override=False)

from app.storage.database import Base, init_database


def main():
    print("Initializing database...")
    db = init_database()
    print(f"Database initialized successfully at {db.engine.url}")
    print(f"Tables created: {', '.join(sorted(Base.metadata.tables))}")
    db.close()


if __name__ == "__main__":
    main()
