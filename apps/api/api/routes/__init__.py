from . import dashboard, inventory, metrics, ping, scrap, shop, tickets, users

__all__ = ["dashboard", "inventory", "metrics", "ping", "scrap", "shop", "tickets", "users"]
