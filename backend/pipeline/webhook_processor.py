"""
Payment Webhook Processor
=========================
Request-scoped orchestration of one gateway callback:

    parse -> normalize -> route by event type -> load order
          -> price guard -> status transition -> fulfillment dispatch

- Webhook Router: only `approved` and `declined` have handlers; anything
  else is acknowledged and dropped
- Replays: a repeated event finds the order already in the target status
  and skips the write; dispatch still runs and the ledger markers keep
  side effects single
- Out-of-order events: each distinct event type writes its status, last
  write wins
- Every outcome maps to an HTTP status through the pipeline error taxonomy
"""

import uuid
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, Field

from config import settings
from observability import IErrorReporter, StructlogErrorReporter
from pipeline.dispatcher import DispatchContext, DispatchReport, FulfillmentDispatcher
from pipeline.errors import (
    InternalError,
    MalformedPayload,
    MissingOrderReference,
    OrderNotFound,
    UnrecognizedEventType,
)
from pipeline.normalizer import ACCEPTED_EVENT_TYPES, NormalizedEvent, normalize, parse_body
from pipeline.price_guard import PriceGuard
from pipeline.status_mapper import map_gateway_status
from schemas import Order, OrderStatus, PaymentDetails
from storage import IOrderRepository


class WebhookResult(BaseModel):
    """HTTP outcome of one webhook delivery"""
    status_code: int = 200
    body: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# WEBHOOK ROUTER
# =============================================================================

EventHandler = Callable[[NormalizedEvent, str], Awaitable[WebhookResult]]


class WebhookRouter:
    """Event-type routing. Unregistered types are not errors."""

    def __init__(self):
        self._handlers: dict[str, EventHandler] = {}
        self._logger = structlog.get_logger(component="webhook_router")

    def register(self, event_type: str):
        """Decorator to register handler for event type"""
        def decorator(handler: EventHandler):
            self._handlers[event_type] = handler
            self._logger.debug("handler_registered", event_type=event_type)
            return handler
        return decorator

    async def route(self, event: NormalizedEvent, correlation_id: str) -> WebhookResult:
        handler = self._handlers.get(event.event_type or "")
        if handler is None:
            raise UnrecognizedEventType(
                "Event type not processed",
                event_type=event.event_type,
            )
        return await handler(event, correlation_id)

    @property
    def supported_events(self) -> list[str]:
        return list(self._handlers.keys())


# =============================================================================
# PROCESSOR
# =============================================================================

class PaymentWebhookProcessor:
    """
    Example:
        processor = PaymentWebhookProcessor(orders, dispatcher)
        result = await processor.process(await request.body())
        return JSONResponse(result.body, status_code=result.status_code)
    """

    def __init__(
        self,
        orders: IOrderRepository,
        dispatcher: FulfillmentDispatcher,
        price_guard: Optional[PriceGuard] = None,
        reporter: Optional[IErrorReporter] = None,
        gateway_name: Optional[str] = None,
    ):
        self.orders = orders
        self.dispatcher = dispatcher
        self.reporter = reporter or StructlogErrorReporter()
        self.price_guard = price_guard or PriceGuard(orders, reporter=self.reporter)
        self.gateway_name = gateway_name or settings.GATEWAY_NAME

        self.router = WebhookRouter()
        self._register_handlers()

        self._base_logger = structlog.get_logger()

    def _get_logger(self, correlation_id: Optional[str] = None):
        """Get logger bound with correlation context"""
        return self._base_logger.bind(
            component="payment_webhook",
            gateway=self.gateway_name,
            correlation_id=correlation_id or str(uuid.uuid4()),
        )

    def _register_handlers(self):
        for event_type in sorted(ACCEPTED_EVENT_TYPES):
            @self.router.register(event_type)
            async def handle_payment_event(event: NormalizedEvent, correlation_id: str):
                return await self._on_payment_event(event, correlation_id)

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    def verify(self, challenge: Optional[str] = None) -> dict:
        """GET handshake: echo the challenge, else report liveness."""
        if challenge:
            return {"challenge": challenge}
        return {"status": "active", "message": f"{self.gateway_name} webhook endpoint is active"}

    async def process(self, body: Any) -> WebhookResult:
        """Handle one delivery. Never raises."""
        correlation_id = str(uuid.uuid4())
        log = self._get_logger(correlation_id)

        try:
            payload = parse_body(body) if not isinstance(body, dict) else body
            event = normalize(payload)
            log.info(
                "webhook_received",
                event_type=event.event_type,
                order_ref=event.order_ref,
                status=event.status,
            )
            return await self.router.route(event, correlation_id)

        except MalformedPayload as e:
            log.warning("webhook_malformed", error=e.message, **e.context)
            return WebhookResult(status_code=e.status_code, body={"error": e.message})

        except UnrecognizedEventType as e:
            log.info("webhook_ignored", reason="unrecognized_event_type", **e.context)
            return WebhookResult(body={
                "received": True,
                "processed": False,
                "note": f"Event type {e.context.get('event_type')!r} is not processed",
            })

        except MissingOrderReference as e:
            log.warning("webhook_ignored", reason="missing_order_reference", **e.context)
            return WebhookResult(body={"received": True, "processed": False, "note": e.message})

        except OrderNotFound as e:
            self.reporter.report(e, correlation_id=correlation_id, **e.context)
            return WebhookResult(body={"received": True, "processed": False, "note": e.message})

        except Exception as e:
            self.reporter.report(
                InternalError("Unexpected webhook failure", cause=type(e).__name__, detail=str(e)),
                correlation_id=correlation_id,
            )
            return WebhookResult(status_code=500, body={"error": "Internal server error"})

    # =========================================================================
    # EVENT HANDLING
    # =========================================================================

    async def _on_payment_event(self, event: NormalizedEvent, correlation_id: str) -> WebhookResult:
        log = self._get_logger(correlation_id)

        if not event.order_ref:
            raise MissingOrderReference("Could not extract order reference from payload", event_type=event.event_type)

        order = await self.orders.get_by_order_number(event.order_ref)
        if order is None:
            raise OrderNotFound("Order not found", order_number=event.order_ref, event_type=event.event_type)

        log = log.bind(order_number=order.order_number)

        order, price_check = await self.price_guard.reconcile(order)

        status = map_gateway_status(event.effective_status)
        previous_status = order.status

        if previous_status == status:
            log.info("status_unchanged", status=status.value)
        else:
            order = await self.orders.patch(order.id, fields=self._transition_fields(order, event, status))
            log.info(
                "order_status_updated",
                previous_status=previous_status.value,
                status=status.value,
                transaction_id=event.transaction_id,
                amount=event.amount,
                currency=event.currency,
            )

        report = await self.dispatcher.dispatch(order, DispatchContext(status=status, event=event))

        return WebhookResult(body={
            "received": True,
            "processed": True,
            "order_number": order.order_number,
            "status": status.value,
            "status_changed": previous_status != status,
            "price_corrected": price_check.corrected,
            "dispatch": _summarize(report),
        })

    def _transition_fields(self, order: Order, event: NormalizedEvent, status: OrderStatus) -> dict:
        fields: dict[str, Any] = {
            "status": status,
            "payment_method": event.payment_method or "credit_card",
            "payment": PaymentDetails(
                charge_id=event.charge_id,
                status=event.effective_status,
                amount=event.amount,
                currency=event.currency,
                psp_name=event.psp_name,
                mid_alias=event.mid_alias,
                card_brand=event.card_brand,
                card_last4=event.card_last4,
                card_masked=event.card_masked,
                customer_email=event.customer_email,
                customer_ip=event.customer_ip,
                decline_reason=event.decline_reason,
                webhook_type=event.event_type,
                gateway_created_at=(
                    str(event.gateway_created_at) if event.gateway_created_at is not None else None
                ),
            ),
        }

        if status == OrderStatus.COMPLETED:
            if event.transaction_id:
                fields["transaction_id"] = event.transaction_id
            card_info = (
                f" ({event.card_brand} ending in {event.card_last4})" if event.card_brand else ""
            )
            fields["notes"] = (
                f"Payment approved via {self.gateway_name}. "
                f"Transaction ID: {event.transaction_id or 'n/a'}{card_info}"
            )
        elif status == OrderStatus.FAILED:
            fields["notes"] = (
                f"Payment declined via {self.gateway_name}. "
                f"Reason: {event.decline_reason or event.effective_status}"
            )
        return fields


def _summarize(report: DispatchReport) -> dict[str, str]:
    return {r.step: r.status for r in report.results}
