"""Exception types shared by the aggregator, store and scheduler."""


class AdapterError(Exception):
    """A single source failed or timed out."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class AggregationPartialFailure(Exception):
    """Some, but not all, enabled sources failed."""


class AggregationTotalFailure(Exception):
    """Every enabled source failed."""


class StoreError(Exception):
    """Base class for result store failures."""


class StoreNotFound(StoreError):
    """Raised when a watch id is not known to the store."""

    def __init__(self, watch_id: str):
        self.watch_id = watch_id
        super().__init__(f"Unknown watch '{watch_id}'")


class StoreTransactionError(StoreError):
    """Persistence failed; the transaction was rolled back."""
