"""Request and response models for the intake HTTP surface."""

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from order_common.errors import OrderValidationError
from order_common.schemas import OrderItem


class OrderRequest(BaseModel):
    """A customer's order submission.

    Attributes:
        customer (str): Customer display name, must not be blank.
        items (list[OrderItem]): At least one order line.
        table (int): Table number, a positive integer.
    """

    customer: str = Field(..., min_length=1)
    items: list[OrderItem] = Field(..., min_length=1, description="At least one item required")
    table: int = Field(..., gt=0, strict=True)

    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "customer": "Ana",
                "items": [{"name": "Feijoada", "quantity": 2, "unitPrice": 5.00}],
                "table": 3,
            }
        },
    )


class OrderCreated(BaseModel):
    """Response body for a recorded and scheduled order."""

    success: bool = True
    message: str = "Order created successfully"
    id: str


class ErrorResponse(BaseModel):
    """Response body for a failed request.

    ``id`` and ``warning`` are only set when the order was recorded but its
    fulfillment could not be scheduled.
    """

    error: str
    message: str
    id: str | None = None
    warning: str | None = None


class RescheduleResponse(BaseModel):
    """Response body for a reschedule request."""

    id: str
    scheduled: bool


def describe_errors(errors: list[dict]) -> tuple[str | None, str]:
    """Summarize pydantic error entries as the first failing field and a message.

    Args:
        errors: Entries as returned by ``ValidationError.errors()``.

    Returns:
        tuple: The dotted location of the first error and a readable message.
    """
    if not errors:
        return None, "Invalid request"
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    field = ".".join(loc) or None
    return field, first.get("msg", "Invalid value")


def to_validation_error(exc: ValidationError) -> OrderValidationError:
    """Convert a pydantic ValidationError into the intake validation failure."""
    field, message = describe_errors(exc.errors())
    return OrderValidationError(message, field=field)
