from typing import Any


class StockFlowError(Exception):
    """Base class for every failure the ledger core reports to callers.

    Each subclass carries the HTTP status and machine-readable code used by the
    API error envelope, plus a human-readable message safe to show in the UI.
    """

    status_code = 400
    code = "bad_request"

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(StockFlowError):
    status_code = 400
    code = "validation_error"


class NotFoundError(StockFlowError):
    status_code = 404
    code = "not_found"


class InsufficientStockError(StockFlowError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(
        self,
        *,
        product_id: int,
        product_name: str | None,
        available: int,
        requested: int,
    ):
        label = f'"{product_name}"' if product_name else f"product #{product_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, Requested: {requested}",
            details=[
                {
                    "product_id": product_id,
                    "available": available,
                    "requested": requested,
                }
            ],
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested


class AlreadyReturnedError(StockFlowError):
    status_code = 409
    code = "already_returned"


class UnauthorizedError(StockFlowError):
    status_code = 401
    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized", *, forbidden: bool = False):
        super().__init__(message)
        if forbidden:
            self.status_code = 403
            self.code = "forbidden"


class ConflictError(StockFlowError):
    status_code = 409
    code = "conflict"


class TransientStoreError(StockFlowError):
    status_code = 503
    code = "transient_store_error"


class EmptyOrderError(ValidationError):
    def __init__(self, message: str = "No items in sale"):
        super().__init__(message)
