from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional

from handyman_payments.payments.additional_charge import AdditionalChargeOrchestrator
from handyman_payments.payments.booking import BookingService
from handyman_payments.payments.capture import CaptureOrchestrator
from handyman_payments.payments.quote_checkout import QuoteCheckoutOrchestrator
from handyman_payments.payments.reconciler import PaymentReconciler
from handyman_payments.utils.admin_auth import build_admin_verifier
from handyman_payments.utils.config import Settings, load_settings
from handyman_payments.utils.logger import get_logger
from handyman_payments.utils.notifications import build_dispatcher
from handyman_payments.utils.stripe_gateway import build_gateway
from handyman_payments.utils.task_store import build_stores

logger = get_logger("services")


@dataclass
class Services:
    settings: Settings
    booking: BookingService
    capture: CaptureOrchestrator
    additional_charge: AdditionalChargeOrchestrator
    quote_checkout: QuoteCheckoutOrchestrator
    verify_admin: Optional[Callable] = None


def wire_services(settings: Settings, store, quotes, gateway, notifier, verify_admin=None) -> Services:
    """Assemble the orchestrators around explicitly provided clients."""
    reconciler = PaymentReconciler(gateway, list_limit=settings.reconcile_list_limit)
    booking = BookingService(store, gateway, notifier, currency=settings.currency)
    return Services(
        settings=settings,
        booking=booking,
        capture=CaptureOrchestrator(store, gateway, reconciler, notifier),
        additional_charge=AdditionalChargeOrchestrator(
            store,
            gateway,
            notifier,
            currency=settings.currency,
            default_travel_fee=settings.default_travel_fee,
            cap_ratio=settings.additional_charge_cap_ratio,
        ),
        quote_checkout=QuoteCheckoutOrchestrator(quotes, gateway, booking, notifier, currency=settings.currency),
        verify_admin=verify_admin,
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    """
    Build the production clients once per Lambda container.

    Raises RuntimeError on missing configuration; handlers turn that into a
    500 ``server_misconfigured`` response.
    """
    settings = load_settings()
    store, quotes = build_stores(settings)
    gateway = build_gateway(
        currency=settings.currency,
        timeout=settings.payment_timeout_seconds,
        max_network_retries=settings.payment_max_network_retries,
    )
    notifier = build_dispatcher(settings)
    verify_admin = build_admin_verifier() if settings.admin_secret_name else None
    logger.info("services.initialized", extra={"region": settings.region, "admin_auth": verify_admin is not None})
    return wire_services(settings, store, quotes, gateway, notifier, verify_admin=verify_admin)
