from paycore.repositories.orders import InMemoryOrderRepository, OrderRepository, SqlAlchemyOrderRepository

__all__ = [
    "InMemoryOrderRepository",
    "OrderRepository",
    "SqlAlchemyOrderRepository",
]
