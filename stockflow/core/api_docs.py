from typing import Any

from stockflow.schemas.common import ErrorOut

# (code, message, details) rendered as the OpenAPI example for each status.
_ERROR_EXAMPLES: dict[int, tuple[str, str, list[dict[str, Any]] | None]] = {
    400: ("validation_error", "Quantity must be a positive whole number", None),
    401: ("unauthorized", "Not authenticated", None),
    403: ("forbidden", "Insufficient role for this action", None),
    404: ("not_found", "Product #42 not found", None),
    409: (
        "insufficient_stock",
        'Insufficient stock for "Kabel Roll 50m". Available: 2, Requested: 5',
        [{"product_id": 42, "available": 2, "requested": 5}],
    ),
    422: (
        "validation_error",
        "Validation failed",
        [{"field": "quantity", "message": "Input should be greater than 0", "type": "greater_than"}],
    ),
    500: ("internal_error", "Internal server error", None),
    503: ("transient_store_error", "The data store is temporarily unavailable. Please retry.", None),
}


def error_responses(*status_codes: int) -> dict[int, dict]:
    """OpenAPI ``responses`` entries documenting the error envelope for each status."""
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        code, message, details = _ERROR_EXAMPLES.get(status_code, ("http_error", "HTTP error", None))
        example = {
            "error": {
                "code": code,
                "message": message,
                "request_id": "0b6f7c1e-3d7a-4c8e-9a52-2f1d1f0b9e11",
                "path": "/movements",
                "details": details,
            }
        }
        responses[status_code] = {
            "model": ErrorOut,
            "description": message,
            "content": {"application/json": {"example": example}},
        }
    return responses
