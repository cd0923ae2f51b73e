# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure for PostgreSQL persistence.

Example:
    from notifyhub.infrastructure.database import (
        SqlAlchemyInstanceRepository,
        get_sessionmaker,
        init_database,
    )

    await init_database(settings)
    instances = SqlAlchemyInstanceRepository(get_sessionmaker())
"""

from notifyhub.infrastructure.database.connection import (
    DatabaseError,
    check_database_connection,
    close_database,
    create_schema,
    create_sessionmaker,
    create_engine_from_settings,
    get_engine,
    get_session,
    get_sessionmaker,
    init_database,
    is_database_initialized,
    session_scope,
)
from notifyhub.infrastructure.database.repositories import (
    SqlAlchemyInstanceRepository,
    SqlAlchemyPreferenceRepository,
)

__all__ = [
    "DatabaseError",
    "check_database_connection",
    "close_database",
    "create_schema",
    "create_sessionmaker",
    "create_engine_from_settings",
    "get_engine",
    "get_session",
    "get_sessionmaker",
    "init_database",
    "is_database_initialized",
    "session_scope",
    "SqlAlchemyInstanceRepository",
    "SqlAlchemyPreferenceRepository",
]
