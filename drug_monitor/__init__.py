"""
Drug availability monitoring service package.

This package contains modules for querying the gorzdrav preferential
medication search, storing Telegram subscribers, notifying them and
coordinating scheduled checks.  See README.md for details.
"""

__all__ = [
    "commands",
    "config",
    "db",
    "main",
    "monitor",
    "notifier",
    "pharmacy_api",
    "scheduling",
    "telegram_api",
    "utils",
]
