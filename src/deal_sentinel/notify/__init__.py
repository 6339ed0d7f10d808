"""Outbound alert notifications."""

from deal_sentinel.notify.discord import (
    DiscordNotifier,
    Notifier,
    NullNotifier,
    build_embed,
    create_notifier,
)

__all__ = [
    "DiscordNotifier",
    "Notifier",
    "NullNotifier",
    "build_embed",
    "create_notifier",
]
