"""
billing_services.recalculation -- Last-write-wins service recalculation.

Responsibility:
    Callers trigger recalculation whenever a service's inputs change, often
    several times in quick succession.  The coordinator numbers each
    submission per service, computes it against the config snapshot taken
    at submission time, and stores the result only if no newer submission
    exists for that service.  A stale completion is discarded whole, never
    merged with the current result.

Architecture position:
    Services -- caller-side helper around BookingBillingService.  Engines
    stay pure and synchronous; this is the only stateful piece.

Invariants enforced:
    - Revisions per service are strictly increasing until it is forgotten.
    - The stored calculation of a service always comes from its latest
      submission that has completed.
    - The stored ServiceCalculation is replaced as a unit under a lock.
    - Replacing the config re-evaluates every known service with the new
      snapshot.
    - A forgotten service leaves no state behind; submissions made before
      forget() never store, even if the service is submitted again.

Usage:
    coordinator = RecalculationCoordinator(config)
    first = coordinator.submit(input_v1)
    second = coordinator.submit(input_v2)
    coordinator.complete(second)   # stored
    coordinator.complete(first)    # discarded, returns None
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from billing_config.schema import CalcConfig
from billing_engines.breakdown import ServiceFinancialInput
from billing_kernel.exceptions import MissingServiceIdError
from billing_kernel.logging_config import get_logger
from billing_services.booking_billing import BookingBillingService, ServiceCalculation

logger = get_logger("services.recalculation")

Calculator = Callable[[CalcConfig, ServiceFinancialInput], ServiceCalculation]


def _default_calculator(
    config: CalcConfig, service_input: ServiceFinancialInput
) -> ServiceCalculation:
    return BookingBillingService(config).calculate_service(service_input)


class _Lineage:
    """Revision counter of one tracked service, replaced when it is forgotten."""

    __slots__ = ("revision",)

    def __init__(self) -> None:
        self.revision = 0


@dataclass(frozen=True)
class Submission:
    """One recalculation request for a service."""

    service_id: str
    revision: int
    service_input: ServiceFinancialInput
    config: CalcConfig
    lineage: _Lineage = field(repr=False, compare=False, default_factory=_Lineage)


@dataclass(frozen=True)
class _Stored:
    revision: int
    calculation: ServiceCalculation


class RecalculationCoordinator:
    """
    Per-service last-write-wins recalculation.

    Thread-safe: submissions and completions may come from any thread.
    The calculation itself runs outside the lock.
    """

    def __init__(self, config: CalcConfig, calculator: Calculator | None = None):
        self._config = config
        self._calculator = calculator or _default_calculator
        self._lock = threading.Lock()
        self._lineages: dict[str, _Lineage] = {}
        self._latest_input: dict[str, ServiceFinancialInput] = {}
        self._results: dict[str, _Stored] = {}

    @property
    def config(self) -> CalcConfig:
        with self._lock:
            return self._config

    def submit(self, service_input: ServiceFinancialInput) -> Submission:
        """Register new inputs for a service and return its submission."""
        service_id = service_input.service_id
        if not service_id:
            raise MissingServiceIdError()

        with self._lock:
            lineage = self._lineages.setdefault(service_id, _Lineage())
            lineage.revision += 1
            revision = lineage.revision
            self._latest_input[service_id] = service_input
            submission = Submission(
                service_id=service_id,
                revision=revision,
                service_input=service_input,
                config=self._config,
                lineage=lineage,
            )

        logger.debug("recalculation_submitted", extra={
            "service_id": service_id,
            "revision": revision,
        })
        return submission

    def complete(self, submission: Submission) -> ServiceCalculation | None:
        """
        Compute a submission and store it if it is still the latest.

        Returns:
            The stored calculation, or None when a newer submission for the
            same service exists or the service was forgotten since.
        """
        calculation = self._calculator(submission.config, submission.service_input)

        with self._lock:
            lineage = self._lineages.get(submission.service_id)
            latest = lineage.revision if lineage is not None else 0
            if lineage is not submission.lineage or submission.revision < latest:
                stale = True
            else:
                self._results[submission.service_id] = _Stored(
                    submission.revision, calculation
                )
                stale = False

        if stale:
            logger.info("recalculation_discarded_stale", extra={
                "service_id": submission.service_id,
                "revision": submission.revision,
                "latest_revision": latest,
            })
            return None

        logger.debug("recalculation_stored", extra={
            "service_id": submission.service_id,
            "revision": submission.revision,
        })
        return calculation

    def recalculate(self, service_input: ServiceFinancialInput) -> ServiceCalculation | None:
        """Submit and complete in one step."""
        return self.complete(self.submit(service_input))

    def replace_config(self, config: CalcConfig) -> dict[str, ServiceCalculation]:
        """
        Swap the config snapshot and re-evaluate every known service.

        Returns:
            The calculations stored by the re-evaluation, by service id.
        """
        with self._lock:
            self._config = config
            inputs = list(self._latest_input.values())

        logger.info("recalculation_config_replaced", extra={
            "service_count": len(inputs),
            "mode": config.mode.value,
            "use_booking_sale_total": config.use_booking_sale_total,
        })

        refreshed: dict[str, ServiceCalculation] = {}
        for service_input in inputs:
            calculation = self.recalculate(service_input)
            if calculation is not None:
                refreshed[service_input.service_id] = calculation
        return refreshed

    def current(self, service_id: str) -> ServiceCalculation | None:
        with self._lock:
            stored = self._results.get(service_id)
        return stored.calculation if stored is not None else None

    def current_revision(self, service_id: str) -> int:
        with self._lock:
            stored = self._results.get(service_id)
        return stored.revision if stored is not None else 0

    def snapshot(self) -> dict[str, ServiceCalculation]:
        """Stored calculations of every service, in submission order."""
        with self._lock:
            return {
                service_id: stored.calculation
                for service_id, stored in self._results.items()
            }

    def forget(self, service_id: str) -> None:
        """Drop a removed service; pending completions for it are discarded."""
        with self._lock:
            self._latest_input.pop(service_id, None)
            self._results.pop(service_id, None)
            self._lineages.pop(service_id, None)
