"""
Rental Engine Factory

Wires the lifecycle manager to its real collaborators. Tests build the
manager directly with their own catalog, notifier and clock.
"""
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from rental_engine.catalog import SqlCatalog
from rental_engine.clock import utcnow
from rental_engine.config import Settings
from rental_engine.lifecycle import OrderLifecycleManager
from rental_engine.pricing import PricingConfig
from rental_engine.protocols import NotifierProtocol


def create_notifier(settings: Settings) -> NotifierProtocol:
    from rental_engine.messaging import LoggingNotifier, RabbitNotifier

    if settings.notifications_enabled:
        return RabbitNotifier(settings.rabbitmq_url, settings.exchange_name)
    return LoggingNotifier()


def build_manager(
    session_factory: async_sessionmaker,
    settings: Settings,
    notifier: Optional[NotifierProtocol] = None,
    clock: Callable[[], datetime] = utcnow,
) -> OrderLifecycleManager:
    """
    Create an OrderLifecycleManager from settings.

    Args:
        session_factory: Sessions bound to the Interval Store database
        settings: Runtime configuration (tax rate, late-fee multiplier, ...)
        notifier: Overrides the notifier chosen from settings
        clock: Server clock, naive UTC
    """
    return OrderLifecycleManager(
        session_factory=session_factory,
        catalog=SqlCatalog(),
        pricing_config=PricingConfig(
            tax_rate=settings.tax_rate,
            late_fee_multiplier=settings.late_fee_multiplier,
        ),
        notifier=notifier if notifier is not None else create_notifier(settings),
        clock=clock,
        default_shipping=settings.default_shipping,
        currency=settings.currency,
    )
