import logging
from contextlib import asynccontextmanager
from zoneinfo import ZoneInfo

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from apps.api.api.routes import dashboard, inventory, metrics, ping, scrap, shop, tickets, users
from apps.api.core.config import get_settings
from apps.api.core.logging import configure_logging, init_tracer, shutdown_tracer
from apps.api.middleware import RBACMiddleware
from apps.api.services.dashboard import DashboardService
from apps.api.services.inventory import InventoryService
from apps.api.services.scrap import ScrapService
from apps.api.services.shop import ShopService
from apps.api.services.tickets import TicketRepository, TicketService
from apps.api.services.users import UserService


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider

    db_engine = create_async_engine(_to_asyncpg_dsn(settings.database_url), echo=settings.sql_echo, future=True)
    session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
    ticket_repository = TicketRepository(session_factory, engine=db_engine)
    if settings.create_schema_on_startup:
        await ticket_repository.ensure_schema()

    inventory_service = InventoryService(
        session_factory,
        low_stock_threshold=settings.low_stock_threshold,
        medium_stock_threshold=settings.medium_stock_threshold,
    )
    user_service = UserService(session_factory)

    app.state.db_engine = db_engine
    app.state.db_session_factory = session_factory
    app.state.ticket_service = TicketService(
        ticket_repository,
        write_attempts=settings.ticket_write_attempts,
        ticket_number_prefix=settings.ticket_number_prefix,
        currency_symbol=settings.currency_symbol,
    )
    app.state.user_service = user_service
    app.state.inventory_service = inventory_service
    app.state.shop_service = ShopService(
        session_factory,
        low_stock_threshold=settings.low_stock_threshold,
        medium_stock_threshold=settings.medium_stock_threshold,
    )
    app.state.scrap_service = ScrapService(session_factory)
    app.state.dashboard_service = DashboardService(
        ticket_repository,
        inventory_service,
        tz=ZoneInfo(settings.local_timezone),
    )

    if settings.bootstrap_admin_token:
        admin = await user_service.ensure_bootstrap_admin(
            username=settings.bootstrap_admin_username,
            token=settings.bootstrap_admin_token,
        )
        logger.info("Bootstrap administrator ready", extra={"username": admin.username})

    try:
        yield
    finally:
        await db_engine.dispose()
        shutdown_tracer(tracer_provider)
        logging.getLogger(__name__).info("Shutdown complete")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RBACMiddleware)
    app.include_router(ping.router)
    app.include_router(metrics.router)
    app.include_router(dashboard.router)
    app.include_router(tickets.router)
    app.include_router(inventory.router)
    app.include_router(shop.router)
    app.include_router(scrap.router)
    app.include_router(users.router)
    return app


app = create_app()
