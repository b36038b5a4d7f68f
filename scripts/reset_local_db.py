"""Drop and recreate the incident tables in the configured database.

Usage:
    python scripts/reset_local_db.py

Environment:
    DATABASE_URL and SLACK_SIGNING_SECRET must be set in the current shell.
"""

from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from slack_incident_engine import models  # noqa: E402,F401
from slack_incident_engine.db import Base, get_engine  # noqa: E402


def reset_database() -> None:
    engine = get_engine()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    print(f"Recreated tables: {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    reset_database()
