"""
Lifecycle errors. Everything raised before a transition is committed is
surfaced to the caller; SideEffectFailure never leaves the dispatcher.
"""


class OrderLifecycleError(Exception):
    """Base class for errors raised by the order lifecycle."""


class ValidationError(OrderLifecycleError):
    """Raised when the target status needs fields the order does not have. Nothing was written."""
    def __init__(self, missing_fields: list[str], target_status: str | None = None):
        self.missing_fields = list(missing_fields)
        self.target_status = target_status
        super().__init__(f"Missing required fields for {target_status}: {', '.join(self.missing_fields)}")


class InvalidTransitionError(OrderLifecycleError):
    """Raised when the order is in a terminal state and the status would change."""
    def __init__(self, current_state: str | None = None, target_state: str | None = None):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(f"Cannot move order from {current_state} to {target_state}")


class OrderLockedError(OrderLifecycleError):
    """Raised when a client tries to edit an order that is no longer Open."""
    def __init__(self, status: str | None = None):
        self.status = status
        super().__init__(f"Orders with status {status!r} can no longer be edited")


class DeletionNotAllowedError(OrderLifecycleError):
    """Raised when the status or the actor's role does not permit deletion."""
    def __init__(self, status: str | None = None, actor_role: str | None = None):
        self.status = status
        self.actor_role = actor_role
        super().__init__(
            f"Cannot delete order with status {status!r}. Only Cancelled or Draft orders can be deleted."
        )


class PackingSlipNotAllowedError(OrderLifecycleError):
    """Raised when a packing slip cannot be created for the order right now."""
    def __init__(self, status: str | None = None, reason: str = ""):
        self.status = status
        self.reason = reason
        super().__init__(reason or f"Packing slip not available for status {status!r}")


class OrderNotFoundError(OrderLifecycleError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class PersistenceFailure(OrderLifecycleError):
    """Raised when the store fails. The transaction was rolled back."""


class SideEffectFailure(OrderLifecycleError):
    """Raised inside the dispatcher when an effect fails. Caught and logged there."""
    def __init__(self, effect: str, message: str = ""):
        self.effect = effect
        super().__init__(f"{effect}: {message}" if message else effect)


class NotificationNotQueuedError(OrderLifecycleError):
    """Raised when a notification sent by hand was not accepted by the queue. Nothing was logged."""
    def __init__(self, order_id: str, notification_type: str):
        self.order_id = order_id
        self.notification_type = notification_type
        super().__init__(f"Could not queue {notification_type} notification for order {order_id}")
