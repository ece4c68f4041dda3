from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import httpx


class APIError(RuntimeError):
    """Error raised for failed calls against the voltdesk API."""

    def __init__(self, message: str, *, status_code: int | None = None, response: httpx.Response | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = response

    def __str__(self) -> str:
        prefix = f"[{self.status_code}] " if self.status_code is not None else ""
        return f"{prefix}{super().__str__()}"


def _extract_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or "Unknown server error"

    if isinstance(data, Mapping):
        detail = data.get("detail")
        if isinstance(detail, str):
            return detail
        if isinstance(detail, Mapping) and "msg" in detail:
            return str(detail["msg"])
        if isinstance(detail, list):
            messages = [str(item["msg"]) for item in detail if isinstance(item, Mapping) and "msg" in item]
            if messages:
                return "; ".join(messages)
    return "The request could not be completed"


@dataclass(slots=True)
class VoltdeskAPIClient:
    """Small synchronous client for the voltdesk HTTP API."""

    base_url: str
    token: str | None = None
    timeout: float = 10.0
    transport: httpx.BaseTransport | None = None

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = self._build_url(path)
        headers: dict[str, str] = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        headers.update(kwargs.pop("headers", {}))

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:  # pragma: no cover - network failures are checked manually
            raise APIError(f"API request failed: {exc}") from exc

        if response.status_code >= 400:
            message = _extract_error_message(response)
            raise APIError(message, status_code=response.status_code, response=response)

        if response.status_code == 204:
            return None

        if not response.content:
            return None

        content_type = response.headers.get("Content-Type", "")
        if "application/json" in content_type:
            return response.json()
        return response.text

    def _build_url(self, path: str) -> str:
        normalized = path if path.startswith("/") else f"/{path}"
        return f"{self.base_url.rstrip('/')}{normalized}"

    # Health
    def ping(self) -> Mapping[str, Any]:
        return self._request("GET", "/ping")

    def secure_ping(self) -> Mapping[str, Any]:
        return self._request("GET", "/ping/secure")

    def dashboard(self) -> Mapping[str, Any]:
        return self._request("GET", "/dashboard")

    def export_dashboard(self) -> str:
        return self._request("GET", "/dashboard/export", headers={"Accept": "text/csv"})

    # Service tickets
    def list_tickets(self, *, status: str | None = None, search: str | None = None) -> list[Mapping[str, Any]]:
        params = {key: value for key, value in {"status": status, "search": search}.items() if value}
        data = self._request("GET", "/tickets", params=params)
        return list(data or [])

    def create_ticket(
        self,
        *,
        customer_name: str,
        customer_phone: str,
        battery_model: str,
        issue_description: str,
        inverter_model: str | None = None,
    ) -> Mapping[str, Any]:
        payload = {
            "customer_name": customer_name,
            "customer_phone": customer_phone,
            "battery_model": battery_model,
            "issue_description": issue_description,
            "inverter_model": inverter_model or None,
        }
        return self._request("POST", "/tickets", json=payload)

    def get_ticket(self, ticket_id: str) -> Mapping[str, Any]:
        return self._request("GET", f"/tickets/{ticket_id}")

    def specialists(self) -> Mapping[str, Any]:
        return self._request("GET", "/tickets/specialists")

    def export_tickets(self, *, status: str | None = None) -> str:
        params = {"status": status} if status else {}
        return self._request("GET", "/tickets/export", params=params, headers={"Accept": "text/csv"})

    def print_ticket(self, ticket_id: str) -> str:
        return self._request("GET", f"/tickets/{ticket_id}/print", headers={"Accept": "text/html"})

    def assign_specialist(self, ticket_id: str, *, track: str, specialist: str) -> Mapping[str, Any]:
        return self._request("POST", f"/tickets/{ticket_id}/assign/{track}", json={"specialist": specialist})

    def resolve_battery(self, ticket_id: str, *, rechargeable: bool, price: str | None) -> Mapping[str, Any]:
        payload = {"rechargeable": rechargeable, "price": price}
        return self._request("POST", f"/tickets/{ticket_id}/resolve/battery", json=payload)

    def resolve_inverter(
        self,
        ticket_id: str,
        *,
        resolved: bool,
        price: str | None,
        issue_description: str | None = None,
    ) -> Mapping[str, Any]:
        payload = {"resolved": resolved, "price": price, "issue_description": issue_description}
        return self._request("POST", f"/tickets/{ticket_id}/resolve/inverter", json=payload)

    def close_ticket(self, ticket_id: str, *, payment_method: str) -> Mapping[str, Any]:
        return self._request("POST", f"/tickets/{ticket_id}/close", json={"payment_method": payment_method})

    def delete_ticket(self, ticket_id: str) -> None:
        self._request("DELETE", f"/tickets/{ticket_id}")

    # Inventory
    def list_products(self) -> list[Mapping[str, Any]]:
        return list(self._request("GET", "/inventory/products") or [])

    def add_product(self, *, name: str, model: str, category: str, capacity: str | None = None) -> Mapping[str, Any]:
        payload = {"name": name, "model": model, "category": category, "capacity": capacity or None}
        return self._request("POST", "/inventory/products", json=payload)

    def delete_product(self, product_id: str) -> None:
        self._request("DELETE", f"/inventory/products/{product_id}")

    def list_stock(self, *, search: str | None = None, category: str | None = None) -> list[Mapping[str, Any]]:
        params = {key: value for key, value in {"search": search, "category": category}.items() if value}
        return list(self._request("GET", "/inventory/stock", params=params) or [])

    def export_stock(self) -> str:
        return self._request("GET", "/inventory/stock/export", headers={"Accept": "text/csv"})

    def transfer_options(self) -> Mapping[str, Any]:
        return self._request("GET", "/inventory/transfer-options")

    def transfer_stock(
        self,
        *,
        transaction_type: str,
        source: str,
        items: Iterable[Mapping[str, Any]],
        remarks: str | None = None,
    ) -> list[Mapping[str, Any]]:
        payload = {
            "transaction_type": transaction_type,
            "source": source,
            "items": list(items),
            "remarks": remarks or None,
        }
        return list(self._request("POST", "/inventory/transfers", json=payload) or [])

    def list_transactions(self) -> list[Mapping[str, Any]]:
        return list(self._request("GET", "/inventory/transactions") or [])

    # Shop
    def list_shop_stock(self, *, category: str | None = None) -> list[Mapping[str, Any]]:
        params = {"category": category} if category else {}
        return list(self._request("GET", "/shop/stock", params=params) or [])

    def record_sale(self, *, customer_name: str, items: Iterable[Mapping[str, Any]]) -> Mapping[str, Any]:
        payload = {"customer_name": customer_name, "items": list(items)}
        return self._request("POST", "/shop/sales", json=payload)

    def list_sales(self) -> list[Mapping[str, Any]]:
        return list(self._request("GET", "/shop/sales") or [])

    # Scrap
    def list_scrap(self, *, status: str | None = None, search: str | None = None) -> list[Mapping[str, Any]]:
        params = {key: value for key, value in {"status": status, "search": search}.items() if value}
        return list(self._request("GET", "/scrap", params=params) or [])

    def record_scrap(
        self,
        *,
        customer_name: str,
        scrap_item: str,
        scrap_model: str,
        scrap_value: str | None = None,
    ) -> Mapping[str, Any]:
        payload = {
            "customer_name": customer_name,
            "scrap_item": scrap_item,
            "scrap_model": scrap_model,
            "scrap_value": scrap_value or "0",
        }
        return self._request("POST", "/scrap", json=payload)

    def mark_scrap_out(self, entry_id: str) -> Mapping[str, Any]:
        return self._request("POST", f"/scrap/{entry_id}/mark-out")

    # Users
    def list_users(self) -> list[Mapping[str, Any]]:
        return list(self._request("GET", "/users") or [])

    def create_user(
        self,
        *,
        username: str,
        display_name: str | None = None,
        email: str | None = None,
        roles: Iterable[str] = (),
    ) -> Mapping[str, Any]:
        payload = {
            "username": username,
            "display_name": display_name or None,
            "email": email or None,
            "roles": list(roles),
        }
        return self._request("POST", "/users", json=payload)

    def set_roles(self, user_id: str, roles: Iterable[str]) -> Mapping[str, Any]:
        return self._request("PUT", f"/users/{user_id}/roles", json={"roles": list(roles)})
