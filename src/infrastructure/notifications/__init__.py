"""
Push, SMS and email notification channels.
"""

from .channels import (
    EmailSender,
    FcmPushNotifier,
    NotificationChannels,
    NotificationError,
    PushSender,
    RecordingNotifier,
    SmsSender,
    SmtpEmailNotifier,
    TwilioSmsNotifier,
    create_notification_channels,
)

__all__ = [
    "EmailSender",
    "FcmPushNotifier",
    "NotificationChannels",
    "NotificationError",
    "PushSender",
    "RecordingNotifier",
    "SmsSender",
    "SmtpEmailNotifier",
    "TwilioSmsNotifier",
    "create_notification_channels",
]
