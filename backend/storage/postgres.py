# storage/postgres.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - POSTGRES REPOSITORIES
# ============================================================================
# asyncpg-backed order store and integration ledger. Catalogue data is
# served from in-memory repositories filled from the catalogue file
# (storage/catalogue.py) at startup.
# ============================================================================

import json
from typing import Any, Optional

import structlog
from pydantic_core import to_jsonable_python

from database import Database
from schemas import IntegrationOutcome, Order, OrderStatus, utcnow
from storage.repositories import IIntegrationLedger, IOrderRepository

logger = structlog.get_logger(component="postgres_storage")


def _dumps(value: Any) -> str:
    return json.dumps(to_jsonable_python(value))


class PostgresOrderRepository(IOrderRepository):
    """Orders stored as JSONB documents"""

    def __init__(self, db: type[Database] = Database):
        self._db = db

    async def get(self, order_id: str) -> Optional[Order]:
        row = await self._db.fetch_one("SELECT doc FROM orders WHERE id = $1", order_id)
        return Order.model_validate_json(row["doc"]) if row else None

    async def get_by_order_number(self, order_number: str) -> Optional[Order]:
        row = await self._db.fetch_one(
            "SELECT doc FROM orders WHERE order_number = $1", order_number
        )
        return Order.model_validate_json(row["doc"]) if row else None

    async def save(self, order: Order) -> Order:
        await self._db.execute(
            """
            INSERT INTO orders (id, order_number, customer_email, status, doc, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7)
            ON CONFLICT (id) DO UPDATE SET
                order_number = EXCLUDED.order_number,
                customer_email = EXCLUDED.customer_email,
                status = EXCLUDED.status,
                doc = EXCLUDED.doc,
                updated_at = EXCLUDED.updated_at
            """,
            order.id,
            order.order_number,
            order.customer_email,
            order.status.value,
            order.model_dump_json(),
            order.created_at,
            order.updated_at,
        )
        return order

    async def patch(
        self,
        order_id: str,
        fields: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Order:
        now = utcnow()
        root = {**(fields or {}), "updated_at": now}
        status = root.get("status")
        status_value = status.value if isinstance(status, OrderStatus) else status

        # Single statement: root merge and metadata merge land together or not at all
        row = await self._db.fetch_one(
            """
            UPDATE orders SET
                doc = doc || $2::jsonb || jsonb_build_object(
                    'metadata', COALESCE(doc->'metadata', '{}'::jsonb) || $3::jsonb
                ),
                status = COALESCE($4, status),
                updated_at = $5
            WHERE id = $1
            RETURNING doc
            """,
            order_id,
            _dumps(root),
            _dumps(metadata or {}),
            status_value,
            now,
        )
        if row is None:
            raise KeyError(order_id)
        return Order.model_validate_json(row["doc"])

    async def list_by_email(
        self,
        email: str,
        statuses: Optional[list[OrderStatus]] = None,
    ) -> list[Order]:
        status_values = [s.value for s in statuses] if statuses is not None else None
        rows = await self._db.fetch_all(
            """
            SELECT doc FROM orders
            WHERE lower(customer_email) = lower($1)
              AND ($2::text[] IS NULL OR status = ANY($2::text[]))
            ORDER BY created_at ASC
            """,
            email.strip(),
            status_values,
        )
        return [Order.model_validate_json(r["doc"]) for r in rows]


class PostgresIntegrationLedger(IIntegrationLedger):
    """Append-only outcome table"""

    def __init__(self, db: type[Database] = Database):
        self._db = db

    async def append(self, outcome: IntegrationOutcome) -> None:
        await self._db.execute(
            """
            INSERT INTO integration_outcomes (id, order_id, integration, status, doc, recorded_at)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6)
            """,
            outcome.outcome_id,
            outcome.order_id,
            outcome.integration,
            outcome.status.value,
            outcome.model_dump_json(),
            outcome.recorded_at,
        )

    async def latest(self, order_id: str, integration: str) -> Optional[IntegrationOutcome]:
        row = await self._db.fetch_one(
            """
            SELECT doc FROM integration_outcomes
            WHERE order_id = $1 AND integration = $2
            ORDER BY recorded_at DESC
            LIMIT 1
            """,
            order_id,
            integration,
        )
        return IntegrationOutcome.model_validate_json(row["doc"]) if row else None

    async def list_for_order(self, order_id: str) -> list[IntegrationOutcome]:
        rows = await self._db.fetch_all(
            "SELECT doc FROM integration_outcomes WHERE order_id = $1 ORDER BY recorded_at ASC",
            order_id,
        )
        return [IntegrationOutcome.model_validate_json(r["doc"]) for r in rows]
