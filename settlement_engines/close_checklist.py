"""
Module: settlement_engines.close_checklist
Responsibility:
    Evaluate the month-close checklist from counted facts.  The period
    close service gathers the facts; this module decides.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Checklist:
    no_debts            no sale of the period carries debt
    no_issues           no open warehouse discrepancy, no unconfirmed
                        correction in the period, net profit not negative
    no_open_deals       no sale of the period is DEBT or PARTIALLY_PAID
    inventory_confirmed at least one CONFIRMED count, none PENDING or
                        DISCREPANCY
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from settlement_kernel.domain.values import ZERO


@dataclass(frozen=True)
class ChecklistItem:
    key: str
    label: str
    ok: bool
    reason: str | None = None


@dataclass(frozen=True)
class CloseFacts:
    sales_with_debt: int
    open_deals: int
    open_discrepancies: int
    unconfirmed_corrections: int
    net_profit: Decimal
    confirmed_sessions: int
    unfinished_sessions: int


def evaluate_checklist(facts: CloseFacts) -> tuple[ChecklistItem, ...]:
    issues: list[str] = []
    if facts.open_discrepancies > 0:
        issues.append(f"Open warehouse discrepancies: {facts.open_discrepancies}.")
    if facts.unconfirmed_corrections > 0:
        issues.append(f"Unconfirmed expense corrections: {facts.unconfirmed_corrections}.")
    if facts.net_profit < ZERO:
        issues.append("Net profit for the period is negative.")

    if facts.confirmed_sessions == 0:
        inventory_reason = "No inventory count of the period has been confirmed."
    elif facts.unfinished_sessions > 0:
        inventory_reason = (
            f"Inventory counts still pending or in discrepancy: {facts.unfinished_sessions}."
        )
    else:
        inventory_reason = None

    return (
        ChecklistItem(
            key="no_debts",
            label="No debts",
            ok=facts.sales_with_debt == 0,
            reason=(
                f"Sales with outstanding debt: {facts.sales_with_debt}."
                if facts.sales_with_debt
                else None
            ),
        ),
        ChecklistItem(
            key="no_issues",
            label="No issues",
            ok=not issues,
            reason=" ".join(issues) or None,
        ),
        ChecklistItem(
            key="no_open_deals",
            label="No open deals",
            ok=facts.open_deals == 0,
            reason=(
                f"Sales still in DEBT or PARTIALLY_PAID: {facts.open_deals}."
                if facts.open_deals
                else None
            ),
        ),
        ChecklistItem(
            key="inventory_confirmed",
            label="Inventory confirmed",
            ok=inventory_reason is None,
            reason=inventory_reason,
        ),
    )


def blockers(items: Sequence[ChecklistItem]) -> list[str]:
    return [item.reason or item.label for item in items if not item.ok]
