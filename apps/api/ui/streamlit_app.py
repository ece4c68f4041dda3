from __future__ import annotations

import os
from typing import Any, Callable, Mapping

import streamlit as st

from apps.api.ui.api import APIError, VoltdeskAPIClient
from apps.api.ui.auth import AuthProfile, anonymous_profile, profile_from_ping
from apps.api.ui.utils import parse_price, parse_sale_lines
from packages.workflow import PaymentMethod, Role, TicketStatus
from packages.workflow import roles as capabilities

DEFAULT_BASE_URL = os.getenv("VOLTDESK_API_BASE_URL", "http://localhost:8000")


def _get_auth_profile() -> AuthProfile:
    profile = st.session_state.get("auth_profile")
    if isinstance(profile, AuthProfile):
        return profile
    fallback = anonymous_profile()
    st.session_state["auth_profile"] = fallback
    return fallback


def _set_auth_profile(profile: AuthProfile) -> None:
    st.session_state["auth_profile"] = profile


def _get_base_url() -> str:
    base_url = st.session_state.get("base_url")
    if not base_url:
        base_url = DEFAULT_BASE_URL
        st.session_state["base_url"] = base_url
    return str(base_url)


def _build_client() -> VoltdeskAPIClient:
    profile = _get_auth_profile()
    return VoltdeskAPIClient(base_url=_get_base_url(), token=profile.token)


def _render_sidebar() -> None:
    st.sidebar.header("Connection")
    base_url = st.sidebar.text_input("API base URL", value=_get_base_url(), key="base_url")
    st.session_state["base_url"] = base_url

    st.sidebar.header("Sign in")
    token = st.sidebar.text_input("API token", type="password", key="manual_token")
    if st.sidebar.button("Sign in"):
        client = VoltdeskAPIClient(base_url=base_url, token=token.strip() or None)
        try:
            payload = client.secure_ping()
        except APIError as exc:
            st.sidebar.error(str(exc))
        else:
            profile = profile_from_ping(token.strip(), payload)
            _set_auth_profile(profile)
            st.sidebar.success(f"Signed in as {profile.username}")

    if st.sidebar.button("Sign out"):
        _set_auth_profile(anonymous_profile())
        st.sidebar.info("Signed out")

    active_profile = _get_auth_profile()
    st.sidebar.markdown("---")
    st.sidebar.markdown(f"**Active user:** {active_profile.username}")
    if active_profile.roles:
        st.sidebar.caption("Roles: " + ", ".join(role.value for role in active_profile.roles))


def _handle_api_call(
    callback: Callable[[], object], success_message: str | None = None
) -> tuple[bool, object | None]:
    try:
        result = callback()
    except APIError as exc:
        st.error(str(exc))
        return False, None
    else:
        if success_message:
            st.success(success_message)
        return True, result


def _render_dashboard_tab(client: VoltdeskAPIClient, profile: AuthProfile) -> None:
    st.subheader("Dashboard")
    success, snapshot = _handle_api_call(client.dashboard)
    if not success or not isinstance(snapshot, dict):
        return

    stats = snapshot.get("stats", {})
    cols = st.columns(5)
    cols[0].metric("Open tickets", stats.get("open_tickets", 0))
    cols[1].metric("In progress", stats.get("in_progress_tickets", 0))
    cols[2].metric("Closed today", stats.get("closed_today", 0))
    cols[3].metric("Stock units", stats.get("total_stock", 0))
    cols[4].metric("Low stock items", stats.get("low_stock_count", 0))

    st.markdown("### Recent tickets")
    recent = snapshot.get("recent_tickets") or []
    if recent:
        st.table(
            [
                {
                    "Ticket": ticket.get("ticket_number"),
                    "Customer": ticket.get("customer_name"),
                    "Battery": ticket.get("battery_model"),
                    "Status": ticket.get("status"),
                }
                for ticket in recent
            ]
        )
    else:
        st.caption("No tickets yet")

    st.markdown("### Low stock")
    low = snapshot.get("low_stock_items") or []
    if low:
        st.table(
            [
                {"Product": item["product"]["name"], "Model": item["product"]["model"], "Quantity": item["quantity"]}
                for item in low
            ]
        )
    else:
        st.caption("Every product is above the low stock threshold")

    success, csv_text = _handle_api_call(client.export_dashboard)
    if success and isinstance(csv_text, str):
        st.download_button("Export statistics", data=csv_text, file_name="dashboard.csv", mime="text/csv")


def _specialist_labels(pool: list[Mapping[str, Any]]) -> dict[str, str]:
    return {entry["display_name"]: entry["id"] for entry in pool}


def _render_ticket_actions(client: VoltdeskAPIClient, profile: AuthProfile, detail: Mapping[str, Any]) -> None:
    actor = profile.as_actor()
    ticket_id = str(detail["id"])
    status = detail.get("status")
    has_inverter = bool(detail.get("inverter_model"))

    if capabilities.can_assign_ticket(actor) and status in (TicketStatus.OPEN.value, TicketStatus.IN_PROGRESS.value):
        success, pools = _handle_api_call(client.specialists)
        if success and isinstance(pools, dict):
            with st.form("assign_form"):
                battery_choices = _specialist_labels(pools.get("battery", []))
                battery_label = st.selectbox("Battery specialist", options=["", *battery_choices])
                inverter_label = ""
                inverter_choices: dict[str, str] = {}
                if has_inverter:
                    inverter_choices = _specialist_labels(pools.get("inverter", []))
                    inverter_label = st.selectbox("Inverter specialist", options=["", *inverter_choices])
                assign_submit = st.form_submit_button("Assign")
            if assign_submit:
                if battery_label:
                    _handle_api_call(
                        lambda: client.assign_specialist(ticket_id, track="battery", specialist=battery_choices[battery_label]),
                        "Battery specialist assigned",
                    )
                if inverter_label:
                    _handle_api_call(
                        lambda: client.assign_specialist(ticket_id, track="inverter", specialist=inverter_choices[inverter_label]),
                        "Inverter specialist assigned",
                    )

    if not detail.get("battery_resolved") and (actor.is_admin or detail.get("assigned_battery") == actor.id):
        with st.form("resolve_battery_form"):
            rechargeable = st.radio("Battery rechargeable?", options=["Yes", "No"], horizontal=True)
            battery_price = st.text_input("Battery price")
            battery_submit = st.form_submit_button("Resolve battery")
        if battery_submit:
            try:
                price = parse_price(battery_price)
            except ValueError as exc:
                st.error(str(exc))
            else:
                _handle_api_call(
                    lambda: client.resolve_battery(ticket_id, rechargeable=rechargeable == "Yes", price=price),
                    "Battery resolved",
                )

    if has_inverter and detail.get("inverter_resolved") is False and (
        actor.is_admin or detail.get("assigned_inverter") == actor.id
    ):
        with st.form("resolve_inverter_form"):
            outcome = st.radio("Inverter resolved?", options=["Yes", "No"], horizontal=True)
            inverter_price = st.text_input("Inverter price")
            inverter_issue = st.text_area("Inverter issue description")
            inverter_submit = st.form_submit_button("Resolve inverter")
        if inverter_submit:
            try:
                price = parse_price(inverter_price)
            except ValueError as exc:
                st.error(str(exc))
            else:
                _handle_api_call(
                    lambda: client.resolve_inverter(
                        ticket_id,
                        resolved=outcome == "Yes",
                        price=price,
                        issue_description=inverter_issue or None,
                    ),
                    "Inverter resolved",
                )

    if capabilities.can_close_ticket(actor) and status == TicketStatus.RESOLVED.value:
        with st.form("close_form"):
            method = st.selectbox("Payment method", options=[method.value for method in PaymentMethod])
            close_submit = st.form_submit_button("Close ticket")
        if close_submit:
            _handle_api_call(lambda: client.close_ticket(ticket_id, payment_method=method), "Ticket closed")

    success, page = _handle_api_call(lambda: client.print_ticket(ticket_id))
    if success and isinstance(page, str):
        st.download_button("Download printable ticket", data=page, file_name=f"{detail.get('ticket_number')}.html", mime="text/html")

    if capabilities.can_delete_ticket(actor) and st.button("Delete ticket"):
        success, _ = _handle_api_call(lambda: client.delete_ticket(ticket_id), "Ticket deleted")
        if success:
            st.session_state.pop("selected_ticket", None)


def _render_services_tab(client: VoltdeskAPIClient, profile: AuthProfile) -> None:
    st.subheader("Services")
    actor = profile.as_actor()

    filter_col, search_col = st.columns([1, 2])
    status_filter = filter_col.selectbox("Status", options=["", *(status.value for status in TicketStatus)])
    search = search_col.text_input("Search customer, phone, model or ticket number")
    success, tickets = _handle_api_call(lambda: client.list_tickets(status=status_filter or None, search=search or None))
    if success and tickets:
        st.table(
            [
                {
                    "ID": ticket.get("id"),
                    "Ticket": ticket.get("ticket_number"),
                    "Customer": ticket.get("customer_name"),
                    "Phone": ticket.get("customer_phone"),
                    "Status": ticket.get("status"),
                }
                for ticket in tickets
            ]
        )
    elif success:
        st.caption("No tickets match the filters")

    success, csv_text = _handle_api_call(lambda: client.export_tickets(status=status_filter or None))
    if success and isinstance(csv_text, str):
        st.download_button("Export tickets", data=csv_text, file_name="service-tickets.csv", mime="text/csv")

    if capabilities.can_create_ticket(actor):
        st.markdown("### New service ticket")
        with st.form("create_ticket_form"):
            customer_name = st.text_input("Customer name")
            customer_phone = st.text_input("Customer phone")
            battery_model = st.text_input("Battery model")
            inverter_model = st.text_input("Inverter model (optional)")
            issue = st.text_area("Issue description")
            create_submitted = st.form_submit_button("Create ticket")
        if create_submitted:
            success, ticket = _handle_api_call(
                lambda: client.create_ticket(
                    customer_name=customer_name,
                    customer_phone=customer_phone,
                    battery_model=battery_model,
                    issue_description=issue,
                    inverter_model=inverter_model or None,
                ),
                "Ticket created",
            )
            if success and isinstance(ticket, dict):
                st.session_state["selected_ticket"] = ticket["id"]

    st.markdown("### Ticket details")
    ticket_id = st.text_input("Ticket ID", value=st.session_state.get("selected_ticket", ""))
    if not ticket_id:
        st.caption("Enter a ticket ID to see its details")
        return
    st.session_state["selected_ticket"] = ticket_id
    success, detail = _handle_api_call(lambda: client.get_ticket(ticket_id))
    if not success or not isinstance(detail, dict):
        return

    st.markdown(f"#### {detail.get('ticket_number')} ({detail.get('status')})")
    meta_cols = st.columns(3)
    meta_cols[0].metric("Customer", detail.get("customer_name"))
    meta_cols[1].metric("Battery", detail.get("battery_model"))
    meta_cols[2].metric("Inverter", detail.get("inverter_model") or "-")
    st.write(detail.get("issue_description"))
    if detail.get("resolution_notes"):
        st.info(detail["resolution_notes"])

    st.markdown("#### Activity")
    logs = detail.get("logs") or []
    if logs:
        for log in logs:
            st.write(f"{log.get('created_at')} - {log.get('action')}")
    else:
        st.caption("No activity yet")

    _render_ticket_actions(client, profile, detail)


def _render_inventory_tab(client: VoltdeskAPIClient, profile: AuthProfile) -> None:
    st.subheader("Warehouse inventory")
    actor = profile.as_actor()

    search = st.text_input("Search products", key="stock_search")
    success, stock = _handle_api_call(lambda: client.list_stock(search=search or None))
    if success and stock:
        st.table(
            [
                {
                    "Product": item["product"]["name"],
                    "Model": item["product"]["model"],
                    "Capacity": item["product"].get("capacity") or "-",
                    "Quantity": item["quantity"],
                    "Status": item["level"],
                }
                for item in stock
            ]
        )
    elif success:
        st.caption("No products in the warehouse")

    success, csv_text = _handle_api_call(client.export_stock)
    if success and isinstance(csv_text, str):
        st.download_button("Export stock", data=csv_text, file_name="warehouse-stock.csv", mime="text/csv")

    if capabilities.can_manage_products(actor):
        st.markdown("### Add product")
        with st.form("add_product_form"):
            name = st.text_input("Name")
            model = st.text_input("Model")
            category = st.selectbox("Category", options=["Battery", "Inverter"])
            capacity = st.text_input("Capacity")
            add_submitted = st.form_submit_button("Add product")
        if add_submitted:
            _handle_api_call(
                lambda: client.add_product(name=name, model=model, category=category, capacity=capacity or None),
                "Product added",
            )

    if capabilities.can_manage_stock(actor):
        success, options = _handle_api_call(client.transfer_options)
        if success and isinstance(options, dict) and options.get("pairs") and stock:
            st.markdown("### Stock transfer")
            pair_labels = {f"{kind} - {source}": (kind, source) for kind, source in options["pairs"]}
            product_labels = {f"{item['product']['name']} ({item['product']['model']})": item["product"]["id"] for item in stock}
            with st.form("transfer_form"):
                pair_label = st.selectbox("Direction", options=list(pair_labels))
                chosen = st.multiselect("Products", options=list(product_labels))
                quantity = st.number_input("Quantity per product", min_value=1, value=1, step=1)
                remarks = st.text_input("Remarks")
                transfer_submitted = st.form_submit_button("Book transfer")
            if transfer_submitted:
                kind, source = pair_labels[pair_label]
                _handle_api_call(
                    lambda: client.transfer_stock(
                        transaction_type=kind,
                        source=source,
                        items=[{"product_id": product_labels[label], "quantity": int(quantity)} for label in chosen],
                        remarks=remarks or None,
                    ),
                    "Transfer booked",
                )

        success, transactions = _handle_api_call(client.list_transactions)
        if success and transactions:
            st.markdown("### Recent transactions")
            st.table(
                [
                    {
                        "Product": transaction["product"]["name"],
                        "Quantity": transaction["quantity"],
                        "Type": transaction["transaction_type"],
                        "Source": transaction["source"],
                        "Date": transaction["created_at"],
                    }
                    for transaction in transactions
                ]
            )


def _render_shop_tab(client: VoltdeskAPIClient, profile: AuthProfile) -> None:
    st.subheader("Shop")
    success, stock = _handle_api_call(client.list_shop_stock)
    if success and stock:
        st.table(
            [
                {"Product": item["product"]["name"], "Model": item["product"]["model"], "Quantity": item["quantity"]}
                for item in stock
            ]
        )

    st.markdown("### Record sale")
    with st.form("sale_form"):
        customer_name = st.text_input("Customer name")
        lines = st.text_area(
            "Items",
            height=120,
            placeholder="Battery, EXIDE-150AH, 1, 12500\nInverter, LUM-900, 1, 6400",
        )
        sale_submitted = st.form_submit_button("Record sale")
    if sale_submitted:
        try:
            items = parse_sale_lines(lines)
        except ValueError as exc:
            st.error(str(exc))
        else:
            _handle_api_call(lambda: client.record_sale(customer_name=customer_name, items=items), "Sale recorded")

    success, sales = _handle_api_call(client.list_sales)
    if success and sales:
        st.markdown("### Recent sales")
        st.table(
            [
                {"Customer": sale["customer_name"], "Items": len(sale["items"]), "Total": sale["total"], "Date": sale["created_at"]}
                for sale in sales
            ]
        )


def _render_scrap_tab(client: VoltdeskAPIClient, profile: AuthProfile) -> None:
    st.subheader("Scrap")
    with st.form("scrap_form"):
        customer_name = st.text_input("Customer name")
        scrap_item = st.text_input("Item")
        scrap_model = st.text_input("Model")
        scrap_value = st.text_input("Value")
        scrap_submitted = st.form_submit_button("Record scrap")
    if scrap_submitted:
        try:
            value = parse_price(scrap_value)
        except ValueError as exc:
            st.error(str(exc))
        else:
            _handle_api_call(
                lambda: client.record_scrap(
                    customer_name=customer_name,
                    scrap_item=scrap_item,
                    scrap_model=scrap_model,
                    scrap_value=value,
                ),
                "Scrap recorded",
            )

    status_filter = st.selectbox("Status", options=["", "IN", "OUT"], key="scrap_status")
    success, entries = _handle_api_call(lambda: client.list_scrap(status=status_filter or None))
    if not success or not entries:
        return
    for entry in entries:
        cols = st.columns([3, 2, 1, 1])
        cols[0].write(f"{entry['customer_name']} - {entry['scrap_item']} ({entry['scrap_model']})")
        cols[1].write(entry["created_at"])
        cols[2].write(entry["status"])
        if entry["status"] == "IN" and cols[3].button("Mark out", key=f"scrap-out-{entry['id']}"):
            _handle_api_call(lambda entry_id=entry["id"]: client.mark_scrap_out(entry_id), "Scrap marked out")


def _render_users_tab(client: VoltdeskAPIClient, profile: AuthProfile) -> None:
    st.subheader("Users")
    role_values = [role.value for role in Role]

    success, users = _handle_api_call(client.list_users)
    if success and users:
        st.table(
            [
                {"ID": user["id"], "Username": user["username"], "Name": user["display_name"], "Roles": ", ".join(user["roles"])}
                for user in users
            ]
        )

    st.markdown("### New user")
    with st.form("create_user_form"):
        username = st.text_input("Username")
        display_name = st.text_input("Display name")
        email = st.text_input("Email")
        roles = st.multiselect("Roles", options=role_values)
        create_submitted = st.form_submit_button("Create user")
    if create_submitted:
        success, created = _handle_api_call(
            lambda: client.create_user(username=username, display_name=display_name, email=email, roles=roles),
            "User created",
        )
        if success and isinstance(created, dict):
            st.warning("Share this API token with the user now, it is not shown again.")
            st.code(created["api_token"], language="text")

    st.markdown("### Change roles")
    with st.form("roles_form"):
        user_id = st.text_input("User ID")
        new_roles = st.multiselect("Roles", options=role_values, key="new_roles")
        roles_submitted = st.form_submit_button("Save roles")
    if roles_submitted:
        _handle_api_call(lambda: client.set_roles(user_id, new_roles), "Roles updated")


def main() -> None:
    st.set_page_config(page_title="Voltdesk", layout="wide")
    _render_sidebar()

    client = _build_client()
    profile = _get_auth_profile()
    if profile.is_anonymous:
        st.info("Sign in with your API token to continue")
        return
    actor = profile.as_actor()

    tabs: list[tuple[str, Callable[[VoltdeskAPIClient, AuthProfile], None], bool]] = [
        ("Dashboard", _render_dashboard_tab, True),
        ("Services", _render_services_tab, True),
        ("Inventory", _render_inventory_tab, True),
        ("Shop", _render_shop_tab, capabilities.can_record_sale(actor)),
        ("Scrap", _render_scrap_tab, capabilities.can_manage_scrap(actor)),
        ("Users", _render_users_tab, capabilities.can_manage_users(actor)),
    ]

    available = [(label, renderer) for label, renderer, allowed in tabs if allowed]
    tab_objects = st.tabs([label for label, _ in available])

    for tab_object, (_, renderer) in zip(tab_objects, available):
        with tab_object:
            renderer(client, profile)


if __name__ == "__main__":
    main()
