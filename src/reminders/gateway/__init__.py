"""Scheduling gateways: the engine's only boundary to the notification platform."""

from reminders.gateway.base import (
    GatewayCancelError,
    GatewayError,
    GatewayScheduleError,
    NotificationPlatform,
    NotificationPlatformError,
    SchedulingGateway,
)
from reminders.gateway.batching import BatchingReminderGateway

__all__ = [
    "BatchingReminderGateway",
    "GatewayCancelError",
    "GatewayError",
    "GatewayScheduleError",
    "NotificationPlatform",
    "NotificationPlatformError",
    "SchedulingGateway",
]
