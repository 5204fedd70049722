"""
Line-item calculator shared by quotes, orders, invoices and delivery notes.

    line_total      = quantity * unit_price
    discount_amount = line_total * discount / 100
    item_total      = line_total - discount_amount
    subtotal        = sum(item_total)
    tax             = subtotal * tax_rate / 100
    total           = subtotal + tax

Nothing is rounded per line; subtotal, tax and total are each rounded to
cents from the unrounded figures.
"""
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict

from crm_sales.core.exceptions import ValidationFailed
from crm_sales.core.money import HUNDRED, ZERO, percent_of, quantize, to_decimal


class LineItem(BaseModel):
    product_name: str
    description: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    discount: Decimal = Decimal("0")

    model_config = ConfigDict(frozen=True)

    @property
    def amount(self) -> Decimal:
        """Unrounded item total after discount"""
        line_total = self.quantity * self.unit_price
        return line_total - percent_of(line_total, self.discount)

    @property
    def total(self) -> Decimal:
        return quantize(self.amount)


class DocumentTotals(BaseModel):
    subtotal: Decimal
    tax_rate: Decimal
    tax: Decimal
    total: Decimal

    model_config = ConfigDict(frozen=True)


ItemInput = Union[LineItem, Mapping[str, Any]]


def _check_rate(value: Decimal, field: str, index: Optional[int] = None):
    if value < 0 or value > HUNDRED:
        details = {"line": index} if index is not None else None
        raise ValidationFailed(f"{field} must be between 0 and 100", field=field, details=details)


def validate_item(item: ItemInput, index: int = 0) -> LineItem:
    """Coerce one line to a LineItem, rejecting out-of-range values"""
    if isinstance(item, LineItem):
        data = item.model_dump()
    else:
        data = dict(item)

    product_name = (data.get("product_name") or "").strip()
    if not product_name:
        raise ValidationFailed("product_name is required", field="product_name", details={"line": index})

    quantity = to_decimal(data.get("quantity"), "quantity")
    unit_price = to_decimal(data.get("unit_price"), "unit_price")
    discount = to_decimal(data.get("discount") or 0, "discount")

    if quantity < 0:
        raise ValidationFailed("quantity must be >= 0", field="quantity", details={"line": index})
    if unit_price < 0:
        raise ValidationFailed("unit_price must be >= 0", field="unit_price", details={"line": index})
    _check_rate(discount, "discount", index)

    return LineItem(
        product_name=product_name,
        description=data.get("description"),
        quantity=quantity,
        unit_price=unit_price,
        discount=discount,
    )


def validate_items(items: Iterable[ItemInput]) -> List[LineItem]:
    return [validate_item(item, index) for index, item in enumerate(items)]


def calculate_totals(items: Iterable[ItemInput], tax_rate: Any = ZERO) -> DocumentTotals:
    """Compute subtotal, tax and total for a list of line items"""
    lines = validate_items(items)
    rate = to_decimal(tax_rate if tax_rate is not None else ZERO, "tax_rate")
    _check_rate(rate, "tax_rate")

    subtotal = sum((line.amount for line in lines), ZERO)
    tax = quantize(percent_of(subtotal, rate))
    subtotal = quantize(subtotal)
    # Reported figures always add up: total == subtotal + tax
    return DocumentTotals(
        subtotal=subtotal,
        tax_rate=rate,
        tax=tax,
        total=subtotal + tax,
    )
