# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Infrastructure layer for external service integrations.

This package contains clients and adapters for:
- Database persistence (PostgreSQL via SQLAlchemy)
- Cache and digest buckets (Redis)
- In-process lifecycle events
- Background task processing (Dramatiq, APScheduler)
- Notification delivery channels
"""
