#!/usr/bin/env python3
"""
Create the integration, document and audit_log tables.

Uses DATABASE_URL from the environment or the project .env (see config/settings.py).
Existing tables are left untouched.
"""

import logging

from infra.db.engine import get_engine, init_db_schema


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    engine = get_engine()
    init_db_schema(engine)
    print(f"Database schema initialized/verified on {engine.url.render_as_string(hide_password=True)}.")


if __name__ == "__main__":
    main()
