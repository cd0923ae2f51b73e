"""notifyhub.

Notification delivery and eligibility engine for the multi-tenant school
platform: decides whether, where and when a notification goes out, then
tracks it through delivery, retries and reads.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
