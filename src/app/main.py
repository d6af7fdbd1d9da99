from __future__ import annotations

from dotenv import load_dotenv
from fastapi import FastAPI

from src.app.routes.dashboard import router as dashboard_router
from src.app.routes.reports import router as reports_router
from src.app.routes.rules import router as rules_router
from src.app.routes.settings import router as settings_router
from src.app.routes.taxlots import router as taxlots_router
from src.app.routes.telegram import router as telegram_router
from src.app.routes.transactions import router as transactions_router
from src.app.routes.wallets import router as wallets_router
from src.db.init_db import init_db


load_dotenv()


def create_app(*, init_database: bool = True) -> FastAPI:
    app = FastAPI(title="ChainTax", version="0.1.0")

    if init_database:

        @app.on_event("startup")
        def _startup() -> None:
            init_db()

    app.include_router(dashboard_router)
    app.include_router(wallets_router)
    app.include_router(transactions_router)
    app.include_router(rules_router)
    app.include_router(reports_router)
    app.include_router(taxlots_router)
    app.include_router(settings_router)
    app.include_router(telegram_router)
    return app


app = create_app()
