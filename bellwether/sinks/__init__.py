"""Action sinks — sound, notifications, logging, webhooks."""

from bellwether.sinks.base import ActionError, ActionSink
from bellwether.sinks.channels import DesktopChannel, DiscordChannel, NotificationChannel
from bellwether.sinks.router import SinkRouter
from bellwether.sinks.sound import SoundPlayer, detect_player, player_argv
from bellwether.sinks.webhook import WebhookClient

__all__ = [
    "ActionError",
    "ActionSink",
    "DesktopChannel",
    "DiscordChannel",
    "NotificationChannel",
    "SinkRouter",
    "SoundPlayer",
    "WebhookClient",
    "detect_player",
    "player_argv",
]
