"""
billing_services -- Package init and public API.

Responsibility:
    Orchestration over the pure commission engines: per-service calculation
    with an agency config snapshot, booking summaries, payload building and
    last-write-wins recalculation.

Architecture position:
    Services -- orchestration over engines + kernel.

    Dependency direction:
        billing_services/ -> billing_engines/  (allowed)
        billing_services/ -> billing_config/   (allowed)
        billing_services/ -> billing_kernel/   (allowed)
        billing_engines/  -> billing_services/ (FORBIDDEN)
        billing_kernel/   -> billing_services/ (FORBIDDEN)
"""

from billing_kernel.logging_config import get_logger

logger = get_logger("services")

from billing_services.booking_billing import (
    BookingBillingService,
    ServiceCalculation,
    build_service_payload,
)
from billing_services.recalculation import RecalculationCoordinator, Submission

__all__ = [
    "BookingBillingService",
    "RecalculationCoordinator",
    "ServiceCalculation",
    "Submission",
    "build_service_payload",
]
