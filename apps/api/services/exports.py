"""CSV exports and the printable ticket page."""

from __future__ import annotations

import csv
import io
from datetime import date, datetime, timezone, tzinfo
from decimal import Decimal
from html import escape
from typing import Any, Iterable, Mapping, Sequence

from apps.api.services.dashboard import DashboardStats
from apps.api.services.inventory import StockItem
from packages.workflow import ServiceTicket
from packages.workflow.summary import CURRENCY_SYMBOL

TICKET_COLUMNS: tuple[str, ...] = (
    "Ticket Number",
    "Customer Name",
    "Phone",
    "Battery Model",
    "Inverter Model",
    "Issue",
    "Status",
    "SP Battery",
    "Battery Rechargeable",
    "Battery Price",
    "Inverter Price",
    "Total Price",
    "Payment Method",
    "Created At",
)
STOCK_COLUMNS: tuple[str, ...] = ("Product", "Model", "Capacity", "Quantity", "Status")
DASHBOARD_COLUMNS: tuple[str, ...] = (
    "Report Date",
    "Open Tickets",
    "In Progress",
    "Closed Today",
    "Total Stock Units",
    "Low Stock Items",
)


def _format_timestamp(value: datetime, tz: tzinfo) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz).strftime("%d/%m/%Y, %H:%M:%S")


def _plain_amount(value: Decimal | None) -> str:
    amount = value or Decimal("0")
    if amount == amount.to_integral_value():
        return str(amount.quantize(Decimal("1")))
    return str(amount.quantize(Decimal("0.01")))


def _write_csv(columns: Sequence[str], rows: Iterable[Mapping[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(columns), lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writeheader()
    for row in rows:
        writer.writerow({column: "" if row.get(column) is None else row[column] for column in columns})
    return buffer.getvalue()


def ticket_export_row(ticket: ServiceTicket, specialist_name: str, *, tz: tzinfo = timezone.utc) -> dict[str, Any]:
    if ticket.battery_rechargeable is None:
        rechargeable = ""
    else:
        rechargeable = "Yes" if ticket.battery_rechargeable else "No"
    return {
        "Ticket Number": ticket.ticket_number,
        "Customer Name": ticket.customer_name,
        "Phone": ticket.customer_phone,
        "Battery Model": ticket.battery_model,
        "Inverter Model": ticket.inverter_model or "",
        "Issue": ticket.issue_description,
        "Status": ticket.status.value,
        "SP Battery": specialist_name,
        "Battery Rechargeable": rechargeable,
        "Battery Price": _plain_amount(ticket.battery_price),
        "Inverter Price": _plain_amount(ticket.inverter_price),
        "Total Price": _plain_amount(ticket.total_price),
        "Payment Method": ticket.payment_method.value if ticket.payment_method else "",
        "Created At": _format_timestamp(ticket.created_at, tz),
    }


def tickets_to_csv(
    tickets: Iterable[ServiceTicket],
    specialist_names: Mapping[str, str] | None = None,
    *,
    tz: tzinfo = timezone.utc,
) -> str:
    names = specialist_names or {}
    rows = (
        ticket_export_row(ticket, names.get(ticket.assigned_battery or "", "Unassigned"), tz=tz)
        for ticket in tickets
    )
    return _write_csv(TICKET_COLUMNS, rows)


def stock_to_csv(items: Iterable[StockItem]) -> str:
    rows = (
        {
            "Product": item.product.name,
            "Model": item.product.model,
            "Capacity": item.product.capacity or "-",
            "Quantity": item.quantity,
            "Status": item.level.value,
        }
        for item in items
    )
    return _write_csv(STOCK_COLUMNS, rows)


def dashboard_stats_to_csv(stats: DashboardStats, report_date: date) -> str:
    row = {
        "Report Date": report_date.strftime("%d/%m/%Y"),
        "Open Tickets": stats.open_tickets,
        "In Progress": stats.in_progress_tickets,
        "Closed Today": stats.closed_today,
        "Total Stock Units": stats.total_stock,
        "Low Stock Items": stats.low_stock_count,
    }
    return _write_csv(DASHBOARD_COLUMNS, [row])


_PRINT_STYLE = """
body { font-family: Arial, sans-serif; padding: 20px; max-width: 800px; margin: 0 auto; }
.header { display: flex; justify-content: space-between; border-bottom: 2px solid #333; margin-bottom: 20px; }
.grid { display: grid; grid-template-columns: 1fr 1fr; gap: 12px; }
.section { margin-bottom: 12px; }
.label { font-size: 12px; color: #666; text-transform: uppercase; }
.value { font-size: 15px; font-weight: bold; }
.resolution-section { border: 1px solid #ddd; border-radius: 6px; padding: 12px; margin-top: 16px; }
.total-section { text-align: right; margin-top: 20px; border-top: 2px solid #333; padding-top: 10px; }
.total-value { font-size: 24px; font-weight: bold; }
.payment-badge { background: #e8f5e9; color: #2e7d32; padding: 4px 10px; border-radius: 12px; }
.footer { margin-top: 30px; font-size: 11px; color: #888; text-align: center; }
"""


def _field(label: str, value: Any) -> str:
    return f'<div class="section"><div class="label">{escape(label)}</div><div class="value">{escape(str(value))}</div></div>'


def _money(value: Decimal | None, symbol: str) -> str:
    return f"{symbol}{(value or Decimal('0')).quantize(Decimal('0.01'))}"


def render_ticket_html(
    ticket: ServiceTicket,
    battery_specialist: str | None,
    inverter_specialist: str | None = None,
    *,
    symbol: str = CURRENCY_SYMBOL,
    tz: tzinfo = timezone.utc,
) -> str:
    """Render a standalone printable page for ``ticket``."""

    fields = [
        _field("Customer Name", ticket.customer_name),
        _field("Phone Number", ticket.customer_phone),
        _field("Battery Model", ticket.battery_model),
        _field("Inverter Model", ticket.inverter_model or "-"),
        _field("Status", ticket.status.value.replace("_", " ")),
        _field("SP Battery", battery_specialist or "Unassigned"),
    ]
    if ticket.has_inverter:
        fields.append(_field("SP Inverter", inverter_specialist or "Unassigned"))

    sections: list[str] = []
    if ticket.battery_resolved:
        sections.append(
            '<div class="resolution-section"><h2>Battery Service</h2><div class="grid">'
            + _field("Rechargeable", "Yes" if ticket.battery_rechargeable else "No")
            + _field("Price", _money(ticket.battery_price, symbol))
            + "</div></div>"
        )
    if ticket.has_inverter and ticket.inverter_resolved:
        inverter_fields = []
        if ticket.inverter_issue_description:
            inverter_fields.append(_field("Issue Description", ticket.inverter_issue_description))
        inverter_fields.append(_field("Resolved", "Yes" if ticket.inverter_outcome else "No"))
        inverter_fields.append(_field("Price", _money(ticket.inverter_price, symbol)))
        sections.append(
            '<div class="resolution-section"><h2>Inverter Service</h2><div class="grid">'
            + "".join(inverter_fields)
            + "</div></div>"
        )
    if sections:
        payment = ""
        if ticket.payment_method:
            payment = f'<div><span class="payment-badge">Payment: {escape(ticket.payment_method.value)}</span></div>'
        sections.append(
            '<div class="total-section"><div class="label">Total Service Amount</div>'
            f'<div class="total-value">{escape(_money(ticket.total_price, symbol))}</div>{payment}</div>'
        )

    footer = f"Created: {_format_timestamp(ticket.created_at, tz)}"
    if ticket.updated_at != ticket.created_at:
        footer += f" | Updated: {_format_timestamp(ticket.updated_at, tz)}"

    number = escape(ticket.ticket_number)
    return (
        "<!DOCTYPE html><html><head>"
        f'<meta charset="utf-8"><title>Service Ticket - {number}</title>'
        f"<style>{_PRINT_STYLE}</style></head><body>"
        f'<div class="header"><h1>SERVICE TICKET</h1><div class="ticket-number">{number}</div></div>'
        f'<div class="grid">{"".join(fields)}</div>'
        f"{_field('Issue Description', ticket.issue_description)}"
        f"{''.join(sections)}"
        f'<div class="footer">{escape(footer)}</div>'
        "</body></html>"
    )
