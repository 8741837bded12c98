"""Receipt rendering.

Rendering happens in two steps: ``layout_receipt`` places every text line and
rule on numbered pages (pure data, no I/O), and ``render_receipt`` draws that
layout into a PDF. The render time is always passed in, so the same order and
the same ``generated_at`` produce identical bytes.

Coordinates are millimetres on an A4 page, measured from the top-left corner.
"""

from datetime import datetime, timezone
from typing import Union

from fpdf import FPDF
from pydantic import BaseModel

from order_common.errors import RenderError
from order_common.schemas import Order, format_amount

CONTENT_TYPE = "application/pdf"
CURRENCY = "R$"
FONT = "helvetica"

LEFT = 20
RIGHT = 190
PAGE_BREAK_AT = 250
PAGE_TOP = 30
PAGE_BOTTOM = 287
# Rule, total and footer lines below the last item.
SUMMARY_HEIGHT = 66


class TextElement(BaseModel):
    """A line of text anchored at its baseline."""

    x: float
    y: float
    text: str
    size: int = 12
    bold: bool = False


class RuleElement(BaseModel):
    """A horizontal rule."""

    x1: float
    x2: float
    y: float
    width: float = 0.5


Element = Union[TextElement, RuleElement]


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


def _money(amount) -> str:
    return f"{CURRENCY} {format_amount(amount)}"


def _check_renderable(order: Order) -> None:
    if order is None:
        raise RenderError("Cannot render a receipt without an order")
    if not getattr(order, "id", None):
        raise RenderError("Order has no id")
    if not getattr(order, "customer", None):
        raise RenderError(f"Order {order.id} has no customer")
    if not getattr(order, "items", None):
        raise RenderError(f"Order {order.id} has no items")


def layout_receipt(order: Order, generated_at: datetime) -> list[list[Element]]:
    """Lay out the receipt of an order.

    Items are listed one block per line; when the cursor passes the page
    break a new page starts with the cursor reset to the top. The summary
    block (total and footer) is kept together on one page.

    Args:
        order: The order to describe.
        generated_at: Render time printed in the footer.

    Returns:
        list[list[Element]]: One list of elements per page.

    Raises:
        RenderError: If the order lacks an id, a customer or items.
    """
    _check_renderable(order)

    pages: list[list[Element]] = [[]]
    page = pages[0]

    page.append(TextElement(x=LEFT, y=30, text="ORDER RECEIPT", size=20, bold=True))
    page.append(RuleElement(x1=LEFT, x2=RIGHT, y=35, width=0.5))

    y = 50
    for line in (
        f"Order ID: {order.id}",
        f"Customer: {order.customer}",
        f"Table: {order.table}",
        f"Date: {_format_timestamp(order.created_at)}",
    ):
        page.append(TextElement(x=LEFT, y=y, text=line))
        y += 10
    y += 10

    page.append(TextElement(x=LEFT, y=y, text="ORDER ITEMS:", bold=True))
    y += 10
    page.append(RuleElement(x1=LEFT, x2=RIGHT, y=y, width=0.5))
    y += 10

    for index, item in enumerate(order.items, start=1):
        page.append(TextElement(x=25, y=y, text=f"{index}. {item.name}"))
        y += 8
        page.append(TextElement(x=30, y=y, text=f"Quantity: {item.quantity}"))
        page.append(TextElement(x=100, y=y, text=f"Unit price: {_money(item.unit_price)}"))
        page.append(TextElement(x=150, y=y, text=f"Subtotal: {_money(item.subtotal)}"))
        y += 12

        if y > PAGE_BREAK_AT:
            page = []
            pages.append(page)
            y = PAGE_TOP

    if y + SUMMARY_HEIGHT > PAGE_BOTTOM:
        page = []
        pages.append(page)
        y = PAGE_TOP

    y += 5
    page.append(RuleElement(x1=LEFT, x2=RIGHT, y=y, width=0.3))
    y += 15
    page.append(TextElement(x=120, y=y, text=f"TOTAL: {_money(order.total)}", size=14, bold=True))

    y += 30
    page.append(TextElement(x=LEFT, y=y, text="Thank you for dining with us!", size=10))
    page.append(TextElement(x=LEFT, y=y + 8, text="Restaurant Order System", size=10))
    page.append(TextElement(x=LEFT, y=y + 16, text=f"Generated at: {_format_timestamp(generated_at)}", size=10))

    return [p for p in pages if p]


def _latin1(text: str) -> str:
    # Core PDF fonts only cover latin-1.
    return text.encode("latin-1", "replace").decode("latin-1")


def render_receipt(order: Order, generated_at: datetime) -> bytes:
    """Render the receipt of an order as a PDF document.

    Args:
        order: The order to render.
        generated_at: Render time, used for the footer and the PDF metadata.

    Returns:
        bytes: The PDF document.

    Raises:
        RenderError: If the order is structurally invalid or drawing fails.
    """
    pages = layout_receipt(order, generated_at)

    try:
        pdf = FPDF(orientation="P", unit="mm", format="A4")
        pdf.set_auto_page_break(auto=False)
        pdf.creation_date = generated_at
        pdf.set_title(f"Receipt {order.id}")

        for elements in pages:
            pdf.add_page()
            for element in elements:
                if isinstance(element, RuleElement):
                    pdf.set_line_width(element.width)
                    pdf.line(element.x1, element.y, element.x2, element.y)
                else:
                    pdf.set_font(FONT, style="B" if element.bold else "", size=element.size)
                    pdf.text(element.x, element.y, _latin1(element.text))

        return bytes(pdf.output())
    except Exception as e:
        raise RenderError(f"Failed to render receipt for order {order.id}: {e}") from e
