# pipeline/status_mapper.py
# Gateway status vocabulary -> internal order status. Total and pure.

import structlog

from schemas import OrderStatus

logger = structlog.get_logger(component="status_mapper")

GATEWAY_STATUS_MAP: dict[str, OrderStatus] = {
    "approved": OrderStatus.COMPLETED,
    "success": OrderStatus.COMPLETED,
    "completed": OrderStatus.COMPLETED,
    "captured": OrderStatus.COMPLETED,
    "settled": OrderStatus.COMPLETED,
    "declined": OrderStatus.FAILED,
    "rejected": OrderStatus.FAILED,
    "failed": OrderStatus.FAILED,
    "error": OrderStatus.FAILED,
    "pending": OrderStatus.PENDING,
    "processing": OrderStatus.PENDING,
    "authorized": OrderStatus.PENDING,
    "cancelled": OrderStatus.CANCELLED,
    "canceled": OrderStatus.CANCELLED,
    "voided": OrderStatus.CANCELLED,
    "refunded": OrderStatus.CANCELLED,
}


def map_gateway_status(status: str) -> OrderStatus:
    """Unknown statuses map to pending, never raise."""
    mapped = GATEWAY_STATUS_MAP.get((status or "").strip().lower())
    if mapped is None:
        logger.warning("unknown_gateway_status", status=status)
        return OrderStatus.PENDING
    return mapped
