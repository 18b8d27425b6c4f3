"""Router package - collects all API routers and registers them on the FastAPI app."""

from fastapi import FastAPI

from maxcoin.routers import (
    accounts,
    ledger,
    transfer,
    withdrawal,
    lottery,
    admin,
)


def register_all_routers(app: FastAPI):
    app.include_router(accounts.router)
    app.include_router(ledger.router)
    app.include_router(transfer.router)
    app.include_router(withdrawal.router)
    app.include_router(lottery.router)
    app.include_router(admin.router)
