class FleetOpsError(Exception):
    """Base class for errors surfaced to the operator."""


class StoreError(FleetOpsError):
    def __init__(self, table, operation, message):
        super().__init__(f"{operation} on '{table}' failed: {message}")
        self.table = table
        self.operation = operation


class SnapshotError(FleetOpsError):
    """A snapshot refresh failed; the previous snapshot is still in place."""


class BookingNotFoundError(FleetOpsError, LookupError):
    def __init__(self, booking_id):
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


class InvalidTransitionError(FleetOpsError):
    def __init__(self, booking_id, current, target):
        super().__init__(f"Booking {booking_id} is {current}: {target} not allowed")
        self.booking_id = booking_id
        self.current = current
        self.target = target


class ImportAbortedError(FleetOpsError):
    def __init__(self, processed, cause):
        super().__init__(f"Import aborted after {processed} rows: {cause}")
        self.processed = processed
