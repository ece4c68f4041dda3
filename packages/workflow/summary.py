"""Human readable text for ticket resolutions and log entries."""

from __future__ import annotations

from decimal import Decimal

from .state import ServiceTicket

CURRENCY_SYMBOL = "₹"
NOTES_SEPARATOR = " | "


def format_amount(amount: Decimal | int | float | None, *, symbol: str = CURRENCY_SYMBOL) -> str:
    """Render ``450`` as ``₹450`` and ``450.5`` as ``₹450.50``."""

    value = Decimal(str(amount)) if amount is not None else Decimal("0")
    if value == value.to_integral_value():
        return f"{symbol}{value.quantize(Decimal('1'))}"
    return f"{symbol}{value.quantize(Decimal('0.01'))}"


def yes_no(flag: bool | None) -> str:
    return "yes" if flag else "no"


def battery_summary(ticket: ServiceTicket, *, symbol: str = CURRENCY_SYMBOL) -> str:
    if not ticket.battery_resolved:
        return "Battery: pending"
    return (
        f"Battery: rechargeable {yes_no(ticket.battery_rechargeable)}, "
        f"{format_amount(ticket.battery_price, symbol=symbol)}"
    )


def inverter_summary(ticket: ServiceTicket, *, symbol: str = CURRENCY_SYMBOL) -> str:
    if not ticket.inverter_resolved:
        return "Inverter: pending"
    outcome = "resolved" if ticket.inverter_outcome else "not resolved"
    if ticket.inverter_issue_description:
        outcome = f"{outcome} ({ticket.inverter_issue_description})"
    return f"Inverter: {outcome}, {format_amount(ticket.inverter_price, symbol=symbol)}"


def compose_resolution_notes(ticket: ServiceTicket, *, symbol: str = CURRENCY_SYMBOL) -> str:
    parts = [battery_summary(ticket, symbol=symbol)]
    if ticket.has_inverter:
        parts.append(inverter_summary(ticket, symbol=symbol))
    return NOTES_SEPARATOR.join(parts)


def battery_log_action(rechargeable: bool, price: Decimal, *, symbol: str = CURRENCY_SYMBOL) -> str:
    return f"Battery resolved - Rechargeable: {yes_no(rechargeable)}, Price: {format_amount(price, symbol=symbol)}"


def inverter_log_action(
    resolved: bool, price: Decimal, issue_description: str | None, *, symbol: str = CURRENCY_SYMBOL
) -> str:
    action = f"Inverter resolved - Resolved: {yes_no(resolved)}, Price: {format_amount(price, symbol=symbol)}"
    if issue_description:
        action = f"{action}, Issue: {issue_description}"
    return action
