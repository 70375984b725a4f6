"""
Balance reconciliation.

Checks that an account's balance is explained by its history:

    starting_balance + sum(coins awarded by levels) - sum(purchases) == cravecoins

Read-only. Drift is reported and logged, never corrected here.
"""
from __future__ import annotations

from typing import Dict

from crave.core.logging import log_event
from crave.features.store.ledger_store import LedgerStore, UnitOfWork


def reconcile_account(store: LedgerStore, user_id: str) -> Dict:
    """
    Reconcile one account.

    Returns a report with the components of the expected balance, the stored
    balance and ``drift`` (stored minus expected; 0 when consistent).
    """
    def work(uow: UnitOfWork) -> Dict:
        account = uow.require_account()
        awarded = uow.sum_coins_awarded()
        spent = uow.sum_purchases()
        expected = account.starting_balance + awarded - spent
        return {
            "user_id": user_id,
            "starting_balance": account.starting_balance,
            "coins_awarded": awarded,
            "coins_spent": spent,
            "expected_balance": expected,
            "current_balance": account.cravecoins,
            "drift": account.cravecoins - expected,
        }

    report = store.read(user_id, work, operation="reconcile")
    report["status"] = "ok" if report["drift"] == 0 else "drift"

    if report["drift"]:
        log_event(
            "error",
            "economy.drift_detected",
            user_id=user_id,
            event_type="reconcile",
            error_code="balance_drift",
            extra={
                "expected_balance": report["expected_balance"],
                "current_balance": report["current_balance"],
                "drift": report["drift"],
            },
        )
    return report
