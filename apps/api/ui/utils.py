from __future__ import annotations

from typing import Any

from packages.workflow import InvalidAmountError, parse_amount


def parse_price(text: str) -> str | None:
    """Validate a price field and return it as a decimal string, blank meaning no price."""

    if not text.strip():
        return None
    try:
        amount = parse_amount(text)
    except InvalidAmountError as exc:
        raise ValueError(str(exc)) from exc
    return str(amount)


def parse_sale_lines(text: str) -> list[dict[str, Any]]:
    """Turn ``type, model, quantity, price`` lines into sale item payloads."""

    items: list[dict[str, Any]] = []
    for index, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue
        parts = [part.strip() for part in line.split(",")]
        if len(parts) < 2:
            raise ValueError(f"Each line needs at least 'type, model' (line {index})")
        product_type, model_number, *rest = parts
        quantity = 1
        if rest and rest[0]:
            try:
                quantity = int(rest[0])
            except ValueError as exc:
                raise ValueError(f"Quantity on line {index} must be a whole number") from exc
            if quantity < 1:
                raise ValueError(f"Quantity on line {index} must be at least 1")
        price = parse_price(rest[1]) if len(rest) > 1 else None
        items.append(
            {
                "product_type": product_type or "Battery",
                "model_number": model_number,
                "quantity": quantity,
                "price": price,
            }
        )
    return items
