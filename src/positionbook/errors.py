"""Exception and warning types raised by positionbook."""


class PositionBookError(Exception):
    """Base class for all positionbook errors."""


class ValidationError(PositionBookError, ValueError):
    """A transaction or intent was rejected before any state changed."""


class TransactionNotFoundError(PositionBookError, KeyError):
    """No transaction with the requested id exists in the log."""

    def __init__(self, transaction_id: str):
        super().__init__(transaction_id)
        self.transaction_id = transaction_id

    def __str__(self) -> str:
        return f"Transaction not found: {self.transaction_id}"


class PrimaryStoreError(PositionBookError):
    """Writing to the primary store failed. The operation was not committed."""

    def __init__(self, collection: str, cause: BaseException):
        super().__init__(f"Primary store write failed for '{collection}': {cause}")
        self.collection = collection
        self.cause = cause


class PartialReconciliationError(PositionBookError):
    """An edit reverted the old transaction but could not apply the new one.

    The ledger no longer agrees with the transaction log and must be
    rebuilt from the log.
    """

    def __init__(self, old_transaction_id: str, cause: BaseException):
        super().__init__(
            f"Edit of transaction {old_transaction_id} reverted the old record "
            f"but failed to apply the new one: {cause}"
        )
        self.old_transaction_id = old_transaction_id
        self.cause = cause
        # Set once the ledger has been rebuilt from the log.
        self.recovered = False


class ReconciliationWarning(UserWarning):
    """A transaction referenced a symbol the ledger does not hold.

    The ledger side of the operation was a no-op, so the ledger and the log
    disagree until the next rebuild.
    """
