# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification domain services.

Example:
    from notifyhub.domains.notification import (
        SendNotificationRequest,
        init_notification_service,
    )

    service = await init_notification_service(settings)
    await service.send(SendNotificationRequest(...))
"""

from notifyhub.domains.notification.history import (
    DailyActivity,
    NotificationHistoryService,
    NotificationStats,
)
from notifyhub.domains.notification.schemas import (
    BulkPreferenceResult,
    BulkPreferenceUpdateRequest,
    BulkSendRequest,
    MarkReadRequest,
    NotificationHistoryQuery,
    NotificationListResponse,
    NotificationResponse,
    PreferenceResponse,
    PreferenceUpdateRequest,
    RecipientSchema,
    SendNotificationRequest,
)
from notifyhub.domains.notification.service import (
    NotificationService,
    PreferenceService,
    build_notification_service,
    close_notification_service,
    default_transport,
    get_notification_service,
    init_notification_service,
)

__all__ = [
    # History
    "DailyActivity",
    "NotificationHistoryService",
    "NotificationStats",
    # Schemas
    "BulkPreferenceResult",
    "BulkPreferenceUpdateRequest",
    "BulkSendRequest",
    "MarkReadRequest",
    "NotificationHistoryQuery",
    "NotificationListResponse",
    "NotificationResponse",
    "PreferenceResponse",
    "PreferenceUpdateRequest",
    "RecipientSchema",
    "SendNotificationRequest",
    # Services
    "NotificationService",
    "PreferenceService",
    "build_notification_service",
    "close_notification_service",
    "default_transport",
    "get_notification_service",
    "init_notification_service",
]
