#!/usr/bin/env python3
"""Create database tables and store the default studio schedule."""
from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from lashstudio import create_app
from lashstudio.extensions import db
from lashstudio.models import ScheduleSettings
from lashstudio.repositories import ScheduleRepository


def init_database() -> None:
    app = create_app()
    with app.app_context():
        db.create_all()
        if ScheduleSettings.query.first() is None:
            ScheduleRepository.upsert(ScheduleSettings.default())
            print("Stored default schedule (Mon-Fri 09:00-12:00, 13:00-17:00)")
        print("Database tables initialized")


if __name__ == "__main__":
    init_database()
