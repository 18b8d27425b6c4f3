"""
Maxcoin MXI Platform - Server Package

Accounting and incentive core for the MXI mining/referral platform:
segmented balance ledger, 3-level referral commissions, withdrawal gating,
peer-to-peer transfers and the weekly lottery. Backed by SQLite storage and
exposed through a REST API.
"""

__version__ = "0.4.0"

__all__ = [
    "account",
    "auth",
    "commission",
    "config",
    "deps",
    "errors",
    "ledger",
    "lottery",
    "mining",
    "models",
    "pricing",
    "routers",
    "scheduler",
    "server",
    "storage",
    "transfer",
    "withdrawal",
]
