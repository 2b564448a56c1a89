# pipeline/dispatcher.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - FULFILLMENT DISPATCHER
# ============================================================================
# Runs the downstream steps for an order in a fixed order. Every step is
# isolated: its failure is recorded and reported, and the loop moves on.
# Each outcome is appended to the integration ledger under a per-step
# marker; a marker whose latest outcome is "sent" short-circuits the step
# on redelivery.
# ============================================================================

from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field

from observability import IErrorReporter, StructlogErrorReporter
from pipeline.errors import IntegrationError
from pipeline.normalizer import NormalizedEvent
from schemas import IntegrationOutcome, Order, OrderStatus, OutcomeStatus
from storage import IIntegrationLedger, InMemoryIntegrationLedger


# =============================================================================
# RESULT TYPES
# =============================================================================

class StepResult(BaseModel):
    """Outcome of one step. `already_sent` is never written to the ledger."""
    step: str = ""
    status: str  # "sent" | "skipped" | "failed" | "already_sent"
    reason: Optional[str] = None
    error: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def sent(cls, **data) -> "StepResult":
        return cls(status="sent", data=data)

    @classmethod
    def skipped(cls, reason: str, **data) -> "StepResult":
        return cls(status="skipped", reason=reason, data=data)

    @classmethod
    def failed(cls, error: str, reason: Optional[str] = None, **data) -> "StepResult":
        return cls(status="failed", error=error, reason=reason, data=data)


class DispatchContext(BaseModel):
    """What the steps know about the triggering event"""
    status: OrderStatus
    event: Optional[NormalizedEvent] = None

    @property
    def outcome(self) -> str:
        return "completed" if self.status == OrderStatus.COMPLETED else "declined"

    @property
    def decline_reason(self) -> Optional[str]:
        if self.event is None:
            return None
        return self.event.decline_reason or self.event.effective_status


class DispatchReport(BaseModel):
    order_number: str
    status: OrderStatus
    results: list[StepResult] = Field(default_factory=list)

    def result_for(self, step: str) -> Optional[StepResult]:
        for result in self.results:
            if result.step == step:
                return result
        return None

    @property
    def failed_steps(self) -> list[str]:
        return [r.step for r in self.results if r.status == "failed"]


# =============================================================================
# STEP INTERFACE
# =============================================================================

class DispatchStep(ABC):
    """One downstream integration. `run` may raise; the dispatcher contains it."""

    name: str = "step"
    statuses: frozenset = frozenset({OrderStatus.COMPLETED})

    def applies_to(self, status: OrderStatus) -> bool:
        return status in self.statuses

    def marker(self, context: DispatchContext) -> str:
        return self.name

    @abstractmethod
    async def run(self, order: Order, context: DispatchContext) -> StepResult:
        pass


# =============================================================================
# DISPATCHER
# =============================================================================

class FulfillmentDispatcher:
    """
    Sequential, failure-isolated fan-out.

    Example:
        dispatcher = FulfillmentDispatcher(steps=[commission, hyros, klaviyo, backoffice])
        report = await dispatcher.dispatch(order, DispatchContext(status=OrderStatus.COMPLETED))
    """

    def __init__(
        self,
        steps: list[DispatchStep],
        ledger: Optional[IIntegrationLedger] = None,
        reporter: Optional[IErrorReporter] = None,
    ):
        self.steps = steps
        self.ledger = ledger or InMemoryIntegrationLedger()
        self.reporter = reporter or StructlogErrorReporter()
        self._base_logger = structlog.get_logger()

    def _get_logger(self, order: Order):
        return self._base_logger.bind(component="fulfillment_dispatcher", order_number=order.order_number)

    async def _already_sent(self, order: Order, marker: str) -> bool:
        try:
            latest = await self.ledger.latest(order.id, marker)
        except Exception as e:
            # Unknown ledger state: run the step rather than drop it
            self._get_logger(order).warning("ledger_read_failed", step=marker, error=str(e))
            return False
        return latest is not None and latest.status == OutcomeStatus.SENT

    async def _run_step(self, step: DispatchStep, order: Order, context: DispatchContext, marker: str) -> StepResult:
        try:
            result = await step.run(order, context)
        except IntegrationError as e:
            self.reporter.report(e, order_number=order.order_number, step=marker, status=e.status)
            result = StepResult.failed(e.message, status=e.status)
        except Exception as e:
            self.reporter.report(e, order_number=order.order_number, step=marker)
            result = StepResult.failed(str(e) or type(e).__name__)
        result.step = marker
        return result

    async def _record(self, order: Order, result: StepResult) -> None:
        try:
            await self.ledger.append(
                IntegrationOutcome(
                    order_id=order.id,
                    order_number=order.order_number,
                    integration=result.step,
                    status=OutcomeStatus(result.status),
                    reason=result.reason,
                    error=result.error,
                    data=result.data,
                )
            )
        except Exception as e:
            self.reporter.report(e, order_number=order.order_number, step=result.step)

    async def dispatch(self, order: Order, context: DispatchContext) -> DispatchReport:
        log = self._get_logger(order)
        report = DispatchReport(order_number=order.order_number, status=context.status)

        for step in self.steps:
            if not step.applies_to(context.status):
                continue

            marker = step.marker(context)
            if await self._already_sent(order, marker):
                report.results.append(StepResult(step=marker, status="already_sent"))
                continue

            result = await self._run_step(step, order, context, marker)
            await self._record(order, result)
            report.results.append(result)

        log.info(
            "fulfillment_dispatched",
            status=context.status.value,
            outcomes={r.step: r.status for r in report.results},
            reasons={r.step: r.reason for r in report.results if r.reason},
            failed=report.failed_steps,
        )
        return report
