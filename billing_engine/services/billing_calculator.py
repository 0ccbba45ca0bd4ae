"""Billing Calculator - pure GST arithmetic for document payloads.

Three steps, no I/O:
- resolve_jurisdiction: intra-state (SGST+CGST) or inter-state (IGST)
- calculate_line: per-line base, discount, taxable and GST split
- aggregate_totals: document totals incl. discount, charges, TCS, round off

All arithmetic is Decimal. Values are left unrounded here; the persistence
layer quantizes to 2 places with ``money()`` when it writes columns.
"""
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, List, Optional, Union

from billing_engine.config import settings
from billing_engine.core.enum_utils import to_enum
from billing_engine.core.exceptions import ValidationError
from billing_engine.models.document import TaxType, DiscountType


ZERO = Decimal("0")
HUNDRED = Decimal("100")
PAISE = Decimal("0.01")
# Quantities are stored as Numeric(12, 3)
QUANTITY_PLACES = Decimal("0.001")

PINCODE_PATTERN = re.compile(r"\d{6}")


def money(value: Union[Decimal, int, float, str, None]) -> Decimal:
    """Quantize an amount to 2 places, half up."""
    if value is None:
        return ZERO.quantize(PAISE)
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(PAISE, rounding=ROUND_HALF_UP)


def _to_decimal(value: Any, field: str) -> Optional[Decimal]:
    if value is None:
        return None
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid number for {field}: {value!r}", {"field": field})
    if not value.is_finite():
        raise ValidationError(f"Invalid number for {field}: {value!r}", {"field": field})
    return value


def _has_quantity_precision(quantity: Decimal) -> bool:
    try:
        return quantity == quantity.quantize(QUANTITY_PLACES)
    except InvalidOperation:
        return False


def _get(item: Any, field: str) -> Any:
    if isinstance(item, dict):
        return item.get(field)
    return getattr(item, field, None)


@dataclass(frozen=True)
class LineAmounts:
    """Derived amounts for one line item."""
    quantity: Decimal
    rate: Decimal
    discount_percent: Decimal
    tax_percent: Decimal
    sgst_percent: Decimal
    cgst_percent: Decimal
    igst_percent: Decimal
    base_amount: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    sgst_amount: Decimal
    cgst_amount: Decimal
    igst_amount: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    """Document-level totals."""
    sub_total: Decimal
    discount_total: Decimal
    additional_charges_total: Decimal
    taxable_amount: Decimal
    tcs_amount: Decimal
    tax_total: Decimal
    sgst_total: Decimal
    cgst_total: Decimal
    igst_total: Decimal
    round_off: Decimal
    grand_total: Decimal

    def as_dict(self) -> dict:
        return {
            "sub_total": self.sub_total,
            "discount_total": self.discount_total,
            "additional_charges_total": self.additional_charges_total,
            "taxable_amount": self.taxable_amount,
            "tcs_amount": self.tcs_amount,
            "tax_total": self.tax_total,
            "sgst_total": self.sgst_total,
            "cgst_total": self.cgst_total,
            "igst_total": self.igst_total,
            "round_off": self.round_off,
            "grand_total": self.grand_total,
        }

    def quantized(self) -> "DocumentTotals":
        """Copy with every amount rounded to 2 places."""
        return DocumentTotals(**{k: money(v) for k, v in self.as_dict().items()})


def resolve_jurisdiction(
    tax_type: Any = None,
    shipping_address: Optional[str] = None,
) -> TaxType:
    """
    Decide between intra-state and inter-state GST.

    An explicit tax type wins. Otherwise the first 6-digit run in the
    shipping address is treated as a pincode: a home-state first digit
    means SGST+CGST, anything else IGST. No pincode means SGST+CGST.
    """
    explicit = to_enum(tax_type, TaxType) if tax_type else None
    if explicit is not None:
        return explicit

    if shipping_address:
        match = PINCODE_PATTERN.search(str(shipping_address))
        if match:
            if match.group(0).startswith(settings.HOME_STATE_PINCODE_PREFIX):
                return TaxType.SGST_CGST
            return TaxType.IGST

    return TaxType.SGST_CGST


def calculate_line(item: Any, tax_type: TaxType) -> LineAmounts:
    """
    Compute derived amounts for one line.

    ``item`` may be a LineItemInput, an ORM row or a plain dict.
    GST percents default to 9/9/18 only when absent; an explicit 0 is kept.
    """
    quantity = _to_decimal(_get(item, "quantity"), "quantity")
    rate = _to_decimal(_get(item, "rate"), "rate")

    if quantity is None:
        raise ValidationError("Line item quantity is required", {"field": "quantity"})
    if rate is None:
        raise ValidationError("Line item rate is required", {"field": "rate"})
    if quantity <= 0:
        raise ValidationError(
            f"Line item quantity must be greater than 0, got {quantity}",
            {"field": "quantity"}
        )
    if not _has_quantity_precision(quantity):
        raise ValidationError(
            f"Line item quantity allows at most 3 decimal places, got {quantity}",
            {"field": "quantity"}
        )
    if rate < 0:
        raise ValidationError(
            f"Line item rate cannot be negative, got {rate}",
            {"field": "rate"}
        )

    discount_percent = _to_decimal(_get(item, "discount_percent"), "discount_percent") or ZERO
    tax_percent = _to_decimal(_get(item, "tax_percent"), "tax_percent") or ZERO

    sgst_percent = _to_decimal(_get(item, "sgst_percent"), "sgst_percent")
    cgst_percent = _to_decimal(_get(item, "cgst_percent"), "cgst_percent")
    igst_percent = _to_decimal(_get(item, "igst_percent"), "igst_percent")
    if sgst_percent is None:
        sgst_percent = settings.DEFAULT_SGST_RATE
    if cgst_percent is None:
        cgst_percent = settings.DEFAULT_CGST_RATE
    if igst_percent is None:
        igst_percent = settings.DEFAULT_IGST_RATE

    base_amount = quantity * rate
    discount_amount = base_amount * discount_percent / HUNDRED if discount_percent else ZERO
    taxable_amount = base_amount - discount_amount
    tax_amount = taxable_amount * tax_percent / HUNDRED if tax_percent else ZERO

    # Only the pair active for the jurisdiction is kept non-zero
    if tax_type == TaxType.IGST:
        sgst_percent = ZERO
        cgst_percent = ZERO
        sgst_amount = ZERO
        cgst_amount = ZERO
        igst_amount = taxable_amount * igst_percent / HUNDRED
    else:
        igst_percent = ZERO
        igst_amount = ZERO
        sgst_amount = taxable_amount * sgst_percent / HUNDRED
        cgst_amount = taxable_amount * cgst_percent / HUNDRED

    return LineAmounts(
        quantity=quantity,
        rate=rate,
        discount_percent=discount_percent,
        tax_percent=tax_percent,
        sgst_percent=sgst_percent,
        cgst_percent=cgst_percent,
        igst_percent=igst_percent,
        base_amount=base_amount,
        discount_amount=discount_amount,
        taxable_amount=taxable_amount,
        tax_amount=tax_amount,
        sgst_amount=sgst_amount,
        cgst_amount=cgst_amount,
        igst_amount=igst_amount,
        # GST is added at document level only
        line_total=taxable_amount,
    )


def calculate_lines(items: Iterable[Any], tax_type: TaxType) -> List[LineAmounts]:
    lines = []
    for index, item in enumerate(items, start=1):
        try:
            lines.append(calculate_line(item, tax_type))
        except ValidationError as e:
            e.details.setdefault("line_number", index)
            raise
    return lines


def _discount_value(discount: Any, sub_total: Decimal) -> Decimal:
    if not discount:
        return ZERO
    raw_type = _get(discount, "type")
    value = _to_decimal(_get(discount, "value"), "discount.value")
    if value is None:
        return ZERO

    discount_type = to_enum(raw_type, DiscountType) if raw_type else DiscountType.FLAT
    if discount_type is None:
        raise ValidationError(
            f"Unknown discount type: {raw_type}",
            {"field": "discount.type"}
        )
    if discount_type == DiscountType.PERCENT:
        return sub_total * value / HUNDRED
    return value


def aggregate_totals(
    lines: Iterable[LineAmounts],
    discount: Any = None,
    additional_charges: Optional[Iterable[Any]] = None,
    apply_tcs: bool = False,
    rounding_applied: bool = False,
) -> DocumentTotals:
    """
    Roll line amounts up into document totals.

    Document-level discount and additional charges adjust the taxable
    amount; TCS is charged on that. GST totals are the sums of line GST and
    are added on top of the taxable amount.
    """
    lines = list(lines)

    sub_total = sum((line.base_amount for line in lines), ZERO)
    discount_total = _discount_value(discount, sub_total)
    additional_charges_total = sum(
        (_to_decimal(_get(charge, "amount"), "additional_charges.amount") or ZERO
         for charge in (additional_charges or [])),
        ZERO,
    )
    taxable_amount = sub_total - discount_total + additional_charges_total
    tcs_amount = taxable_amount * settings.TCS_RATE if apply_tcs else ZERO

    tax_total = sum((line.tax_amount for line in lines), ZERO)
    sgst_total = sum((line.sgst_amount for line in lines), ZERO)
    cgst_total = sum((line.cgst_amount for line in lines), ZERO)
    igst_total = sum((line.igst_amount for line in lines), ZERO)

    grand_total = (
        taxable_amount + tcs_amount + tax_total
        + sgst_total + cgst_total + igst_total
    )

    round_off = ZERO
    if rounding_applied:
        rounded = grand_total.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        round_off = rounded - grand_total
        grand_total = rounded

    return DocumentTotals(
        sub_total=sub_total,
        discount_total=discount_total,
        additional_charges_total=additional_charges_total,
        taxable_amount=taxable_amount,
        tcs_amount=tcs_amount,
        tax_total=tax_total,
        sgst_total=sgst_total,
        cgst_total=cgst_total,
        igst_total=igst_total,
        round_off=round_off,
        grand_total=grand_total,
    )


def amount_in_words(amount: Decimal) -> str:
    """
    Convert amount to words (Indian numbering system).

    num2words stops below 1000 crore; larger amounts are written as figures.
    """
    from num2words import num2words

    amount = money(amount)
    negative = amount < 0
    amount = abs(amount)
    rupees = int(amount)
    paise = int((amount - rupees) * 100)

    try:
        words = num2words(rupees, lang='en_IN').replace(",", "")
    except OverflowError:
        return f"INR {'-' if negative else ''}{amount:,.2f}"
    result = f"Rupees {words.title()} Only"

    if paise > 0:
        paise_words = num2words(paise, lang='en_IN').replace(",", "")
        result = f"Rupees {words.title()} and {paise_words.title()} Paise Only"

    if negative:
        result = f"Minus {result}"
    return result
