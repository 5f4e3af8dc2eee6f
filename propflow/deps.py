# propflow/deps.py
from __future__ import annotations

from .clients.stripe_processor import StripeProcessor
from .services.notifications import LifecycleHooks


def get_processor() -> StripeProcessor:
    return StripeProcessor()


def get_hooks() -> LifecycleHooks:
    return LifecycleHooks()
