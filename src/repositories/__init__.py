"""Database repository helpers."""

from repositories import battles, ledger, wagers
from repositories.ratings import matchups, store

__all__ = ["battles", "ledger", "matchups", "store", "wagers"]
