"""
Alert Relay - ELK alert notifications for Slack

Polls the indexes ELK watchers write alert records into, formats each
embedded alert as a chat message, and posts it to Slack:
- Per-category dispatch for log errors, disk, memory, systemd and docker alerts
- Durable unsent queue for messages that could not be delivered
- Process-wide grace period between Slack sends
"""

__version__ = "0.1.0"
__all__ = [
    "categories",
    "config",
    "dispatcher",
    "drainer",
    "exceptions",
    "logging",
    "models",
    "notifier",
    "rate_limit",
    "runner",
    "store",
]
