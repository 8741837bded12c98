"""Pydantic models for orders and fulfillment tasks."""

from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

CENTS = Decimal("0.01")
# Keeps every line subtotal and order total within the default decimal context.
MAX_QUANTITY = 10_000
MAX_PRICE_DIGITS = 12


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    """Lifecycle status of an order. Only moves from PENDING to PROCESSED."""

    PENDING = "Pending"
    PROCESSED = "Processed"


class OrderItem(BaseModel):
    """Represents a single line of an order.

    Attributes:
        name (str): Display name of the dish, must not be blank.
        quantity (int): Number of portions, between 1 and ``MAX_QUANTITY``.
        unit_price (Decimal): Price per portion with at most two decimal places and
            ``MAX_PRICE_DIGITS`` digits in total.
    """

    name: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0, le=MAX_QUANTITY, strict=True)
    unit_price: Decimal = Field(..., ge=0, max_digits=MAX_PRICE_DIGITS, decimal_places=2)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "properties": {
                "name": {"example": "Feijoada"},
                "quantity": {"example": 2},
                "unitPrice": {"example": "5.00"},
            }
        },
    )

    @field_validator("unit_price")
    @classmethod
    def normalize_price(cls, v: Decimal) -> Decimal:
        """Store prices with exactly two decimal places."""
        return v.quantize(CENTS)

    @property
    def subtotal(self) -> Decimal:
        """Quantity times unit price, rounded half-up to cents."""
        return (self.unit_price * self.quantity).quantize(CENTS, rounding=ROUND_HALF_UP)


def order_total(items: Iterable[OrderItem]) -> Decimal:
    """Sum quantity x unit price over all items, rounded half-up to cents.

    Args:
        items: The order lines.

    Returns:
        Decimal: The order total with exactly two decimal places.
    """
    total = sum((item.unit_price * item.quantity for item in items), Decimal("0"))
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal) -> str:
    """Render a monetary amount with exactly two decimals, e.g. ``"10.00"``."""
    return str(amount.quantize(CENTS, rounding=ROUND_HALF_UP))


class Order(BaseModel):
    """An order as recorded in the ledger.

    Attributes:
        id (str): Opaque unique identifier, assigned at creation.
        customer (str): Customer display name.
        table (int): Physical table number, positive.
        items (list[OrderItem]): Ordered lines, at least one.
        status (OrderStatus): Pending until the receipt has been archived.
        created_at (datetime): When the order was recorded.
        updated_at (datetime): Last status transition.
        receipt_ref (str | None): Document store key, set once processed.
    """

    id: str = Field(..., min_length=1)
    customer: str = Field(..., min_length=1)
    table: int = Field(..., gt=0, strict=True)
    items: list[OrderItem] = Field(..., min_length=1)
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime
    updated_at: datetime
    receipt_ref: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    @model_validator(mode="after")
    def check_receipt_matches_status(self) -> "Order":
        """Ensure a receipt reference is present exactly when the order is processed."""
        if self.status is OrderStatus.PROCESSED and not self.receipt_ref:
            raise ValueError("a processed order must carry a receipt reference")
        if self.status is OrderStatus.PENDING and self.receipt_ref:
            raise ValueError("a pending order cannot carry a receipt reference")
        return self

    @property
    def total(self) -> Decimal:
        """Derived order total; never stored."""
        return order_total(self.items)

    def to_record(self) -> dict:
        """Serialize to the persisted ledger form (camelCase, JSON types)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_record(cls, record: dict) -> "Order":
        """Rebuild an order from its persisted ledger form."""
        return cls.model_validate(record)


class FulfillmentTask(BaseModel):
    """Unit of scheduled work: a pointer to an order, never a snapshot.

    Unknown fields are ignored so snapshot-shaped messages still resolve to
    their order id; the ledger remains the source of truth.
    """

    id: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    def to_message(self) -> bytes:
        """Encode the task as a queue message body."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_message(cls, body: bytes | str) -> "FulfillmentTask":
        """Decode a queue message body.

        Raises:
            pydantic.ValidationError: If the body is not a JSON object with an ``id``.
        """
        return cls.model_validate_json(body)
