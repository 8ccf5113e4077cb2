# Store-level failures surfaced to callers as a failed batch


class EventStoreError(Exception):
    """Base class for event store failures"""


class StoreUnavailableError(EventStoreError):
    """The store could not be reached (connection refused, dropped, timed out)"""


class TransactionFailedError(EventStoreError):
    """The unit of work was rolled back; none of its writes were applied"""
