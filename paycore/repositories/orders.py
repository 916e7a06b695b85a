"""
Order persistence seam used by payment processing.

Payment code never touches an ORM session directly; it reads and mutates
orders through an OrderRepository, so the same service runs against
Postgres in production and a dict in tests.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paycore.core.logging import get_logger
from paycore.models.order import Order

logger = get_logger(__name__)

OrderId = Union[int, str]

_UPDATABLE_FIELDS = frozenset(
    {"status", "payment_status", "payment_method", "gateway_transaction_id", "total_amount", "currency"}
)


class OrderRepository(ABC):
    """Read and update access to orders."""

    @abstractmethod
    async def get(self, order_id: OrderId) -> Optional[Order]:
        pass

    @abstractmethod
    async def update(self, order_id: OrderId, fields: Mapping[str, Any]) -> bool:
        """
        Apply field values to one order.

        Returns:
            False if the order does not exist
        """

    @abstractmethod
    async def find_by(self, criteria: Mapping[str, Any]) -> List[Order]:
        """Orders whose fields equal every value in criteria."""


def _check_fields(fields: Mapping[str, Any]) -> None:
    unknown = set(fields) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update order fields: {', '.join(sorted(unknown))}")


def _coerce_id(order_id: OrderId) -> Optional[int]:
    try:
        return int(order_id)
    except (TypeError, ValueError):
        return None


class InMemoryOrderRepository(OrderRepository):
    def __init__(self, orders: Optional[List[Order]] = None) -> None:
        self.orders: Dict[int, Order] = {}
        self.updates: List[Dict[str, Any]] = []
        for order in orders or []:
            self.add(order)

    def add(self, order: Order) -> Order:
        if order.id is None:
            order.id = max(self.orders, default=0) + 1
        self.orders[order.id] = order
        return order

    async def get(self, order_id: OrderId) -> Optional[Order]:
        key = _coerce_id(order_id)
        return self.orders.get(key) if key is not None else None

    async def update(self, order_id: OrderId, fields: Mapping[str, Any]) -> bool:
        _check_fields(fields)
        order = await self.get(order_id)
        if order is None:
            return False
        for name, value in fields.items():
            setattr(order, name, value)
        self.updates.append({"order_id": order.id, **fields})
        return True

    async def find_by(self, criteria: Mapping[str, Any]) -> List[Order]:
        return [
            order
            for order in self.orders.values()
            if all(getattr(order, name, None) == value for name, value in criteria.items())
        ]


class SqlAlchemyOrderRepository(OrderRepository):
    """Order repository backed by the ``orders`` table.

    Each call opens its own session, and update commits a single
    read-modify-write transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get(self, order_id: OrderId) -> Optional[Order]:
        key = _coerce_id(order_id)
        if key is None:
            return None
        async with self.session_factory() as session:
            return await session.get(Order, key)

    async def update(self, order_id: OrderId, fields: Mapping[str, Any]) -> bool:
        _check_fields(fields)
        key = _coerce_id(order_id)
        if key is None:
            return False
        async with self.session_factory() as session:
            async with session.begin():
                order = await session.get(Order, key, with_for_update=True)
                if order is None:
                    return False
                for name, value in fields.items():
                    setattr(order, name, value)
        logger.info("order.updated", order_id=key, fields=sorted(fields))
        return True

    async def find_by(self, criteria: Mapping[str, Any]) -> List[Order]:
        stmt = select(Order)
        for name, value in criteria.items():
            column = getattr(Order, name, None)
            if column is None:
                raise ValueError(f"Unknown order field: {name}")
            stmt = stmt.where(column == value)
        async with self.session_factory() as session:
            result = await session.scalars(stmt.order_by(Order.id))
            return list(result.all())
