"""
In-memory stand-ins for the lifecycle's collaborators (store, notification
queue, packing slip service) plus small builders used across the tests.
"""
from contextlib import asynccontextmanager

from partner_orders.errors import OrderNotFoundError, PersistenceFailure
from partner_orders.models import Actor, HistoryEntry, NotificationType, Order, PackingSlip
from partner_orders.order_state import ActorRole, OrderStatus
from partner_orders.packing_slips import PackingSlipService

ADMIN = Actor(id="admin-1", name="Alice Admin", role=ActorRole.ADMIN)
CLIENT = Actor(id="client-1", name="Carl Client", role=ActorRole.CLIENT)


def make_order(order_id: str = "ord-1", status: OrderStatus = OrderStatus.OPEN, **fields) -> Order:
    return Order(id=order_id, status=status, **fields)


class InMemorySession:
    def __init__(self, store: "InMemoryOrderStore"):
        self._store = store
        self.saved: dict[str, Order] = {}
        self.history: list[HistoryEntry] = []
        self.packing_slips: list[PackingSlip] = []
        self.deleted: set[str] = set()

    async def load_order(self, order_id: str) -> Order:
        if order_id in self.saved:
            return self.saved[order_id]
        return await self._store.load_order(order_id)

    async def save_order(self, order: Order) -> None:
        if self._store.fail_on_save:
            raise PersistenceFailure("save failed")
        self.saved[order.id] = order

    async def append_history(self, entry: HistoryEntry) -> None:
        if self._store.fail_on_history:
            raise PersistenceFailure("history insert failed")
        self.history.append(entry)

    async def insert_packing_slip(self, slip: PackingSlip) -> None:
        self.packing_slips.append(slip)

    async def delete_order(self, order_id: str) -> None:
        self.deleted.add(order_id)


class InMemoryOrderStore:
    """Writes made through a session only land when the transaction body completes."""

    def __init__(self, *orders: Order):
        self.orders: dict[str, Order] = {o.id: o for o in orders}
        self.history: list[HistoryEntry] = []
        self.packing_slips: list[PackingSlip] = []
        self.fail_on_save = False
        self.fail_on_history = False
        self.commits = 0

    def add(self, order: Order) -> Order:
        self.orders[order.id] = order
        return order

    @asynccontextmanager
    async def transaction(self):
        session = InMemorySession(self)
        yield session
        self.orders.update(session.saved)
        self.history.extend(session.history)
        self.packing_slips.extend(session.packing_slips)
        for order_id in session.deleted:
            self.orders.pop(order_id, None)
        self.commits += 1

    async def load_order(self, order_id: str) -> Order:
        if order_id not in self.orders:
            raise OrderNotFoundError(order_id)
        return self.orders[order_id].model_copy()

    async def save_order(self, order: Order) -> None:
        async with self.transaction() as session:
            await session.save_order(order)

    async def append_history(self, entry: HistoryEntry) -> None:
        if self.fail_on_history:
            raise PersistenceFailure("history insert failed")
        self.history.append(entry)

    async def list_history(self, order_id: str) -> list[HistoryEntry]:
        return [e for e in self.history if e.order_id == order_id]

    async def delete_order(self, order_id: str) -> None:
        async with self.transaction() as session:
            await session.delete_order(order_id)

    def actions(self, order_id: str) -> list[str]:
        return [e.action_type.value for e in self.history if e.order_id == order_id]


class FakeNotifier:
    def __init__(self, failing: set[NotificationType] | None = None, raises: bool = False):
        self.sent: list[tuple[str, NotificationType, str | None]] = []
        self.failing = failing or set()
        self.raises = raises

    async def send(self, order_id: str, notification_type: NotificationType, custom_message: str | None = None) -> bool:
        if self.raises:
            raise ConnectionError("queue unreachable")
        if notification_type in self.failing:
            return False
        self.sent.append((order_id, notification_type, custom_message))
        return True

    def types(self) -> list[NotificationType]:
        return [t for _, t, _ in self.sent]


class FakePackingSlipService(PackingSlipService):
    """Real service (writes through the session) that remembers what it made and can be told to fail."""

    def __init__(self, fail: bool = False):
        self.created: list[PackingSlip] = []
        self.fail = fail

    async def create(self, session, order_id, *args, **kwargs) -> PackingSlip:
        if self.fail:
            raise PersistenceFailure("packing slip insert failed")
        slip = await super().create(session, order_id, *args, **kwargs)
        self.created.append(slip)
        return slip
