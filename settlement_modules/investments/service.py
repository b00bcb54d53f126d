"""
Investment Service (``settlement_modules.investments.service``).

Responsibility
--------------
Investor capital in containers, the payable balance an investor may
withdraw, payouts against it, and the per-investor summary.

Architecture position
---------------------
**Modules layer**.  Share and payable arithmetic lives in
``settlement_engines.settlement``; this service loads rows, locks them
and writes the results back.

Invariants enforced
-------------------
* One ``ContainerInvestment`` per (container, investor); repeated
  contributions accumulate on it.
* Shares are re-derived for the whole container on every change.
* A payout never exceeds ``available + payout_epsilon``; a rejected
  payout leaves no row behind.
* Concurrent payouts for one position serialize on the investment row.

Failure modes
-------------
* ``OverpayError`` when the payout exceeds the available balance.
* ``ContainerInTransitError`` for payouts while the goods are at sea.
* ``ContainerClosedError`` for new capital in a CLOSED container.
* ``NotFoundError`` for unknown containers, investors or positions.

Audit relevance
---------------
INVESTMENT_ADDED and PAYOUT_RECORDED events; rejected payouts are logged
at WARNING with requested and available amounts.

Usage::

    service = InvestmentService(session, clock=clock, control=control)
    balance = service.compute_payable(container_id, investor_id)
    service.record_payout(actor, container_id, investor_id, balance.available)
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_engines.settlement import (
    PayableBalance,
    check_payout,
    compute_payable,
    realized_profit_share,
)
from settlement_kernel.db.unit_of_work import unit_of_work
from settlement_kernel.domain.access import Actor, Operation, RolePolicy
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.control import SystemControl
from settlement_kernel.domain.values import ZERO, quantize_amount, to_amount
from settlement_kernel.exceptions import (
    ContainerClosedError,
    ContainerInTransitError,
    NotFoundError,
    OverpayError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models import (
    AuditAction,
    Container,
    ContainerInvestment,
    Investor,
    InvestorPayout,
)
from settlement_kernel.selectors import SettlementSelector
from settlement_kernel.services.audit_service import AuditService
from settlement_kernel.services.period_service import PeriodService
from settlement_modules.investments.models import (
    InvestmentLine,
    InvestorPosition,
    InvestorSummary,
)
from settlement_services.recompute import ContainerRecomputePipeline

logger = get_logger("modules.investments.service")


class InvestmentService:
    """
    Capital and payout operations.

    Contract
    --------
    * ``add_investment`` and ``record_payout`` are units of work.
    * ``accumulate`` is flush-only and joins the caller's unit of work.
    * ``compute_payable`` and ``investor_summary`` are read-only.

    Guarantees
    ----------
    * The payable balance checked by ``record_payout`` is computed after
      the container and the investment row are locked.

    Non-goals
    ---------
    * Profit distribution waterfalls.  The payable pool is the container's
      cost basis (purchase + expenses); realized profit is reported, not
      paid out automatically.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        control: SystemControl | None = None,
        roles: RolePolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._control = control or SystemControl()
        self._roles = roles or RolePolicy.default()
        self._periods = PeriodService(session, self._clock)
        self._audit = AuditService(session, self._clock)
        self._pipeline = ContainerRecomputePipeline(session, self._control)
        self._selector = SettlementSelector(session)

    # =========================================================================
    # Capital
    # =========================================================================

    def _investment(
        self, container_id: UUID, investor_id: UUID, for_update: bool = False
    ) -> ContainerInvestment | None:
        stmt = select(ContainerInvestment).where(
            ContainerInvestment.container_id == container_id,
            ContainerInvestment.investor_id == investor_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def accumulate(
        self, actor: Actor, container: Container, line: InvestmentLine
    ) -> ContainerInvestment:
        """Add capital to the (container, investor) row, creating it if needed."""
        if container.is_closed:
            raise ContainerClosedError(container.id)
        if self._session.get(Investor, line.investor_id) is None:
            raise NotFoundError("Investor", line.investor_id)

        investment = self._investment(container.id, line.investor_id, for_update=True)
        if investment is None:
            investment = ContainerInvestment(
                container_id=container.id,
                investor_id=line.investor_id,
                invested_amount_usd=line.amount_usd,
                percentage_share=ZERO,
                created_by_id=actor.user_id,
            )
            self._session.add(investment)
        else:
            investment.invested_amount_usd += line.amount_usd
            investment.updated_by_id = actor.user_id
        self._session.flush()

        self._audit.record(
            AuditAction.INVESTMENT_ADDED,
            "ContainerInvestment",
            investment.id,
            actor.user_id,
            {
                "container_id": container.id,
                "investor_id": line.investor_id,
                "amount_usd": line.amount_usd,
                "invested_amount_usd": investment.invested_amount_usd,
            },
        )
        return investment

    def add_investment(
        self,
        actor: Actor,
        container_id: UUID,
        investor_id: UUID,
        amount_usd: Decimal,
    ) -> ContainerInvestment:
        self._roles.require(actor, Operation.INVESTORS_MANAGE)
        line = InvestmentLine(investor_id=investor_id, amount_usd=amount_usd)

        with unit_of_work(self._session, "investments.add", actor):
            container = self._pipeline.lock_container(container_id)
            investment = self.accumulate(actor, container, line)
            result = self._pipeline.recompute(container.id)
            logger.info(
                "investment_added",
                extra={
                    "container_id": str(container.id),
                    "investor_id": str(investor_id),
                    "amount_usd": str(line.amount_usd),
                    "percentage_share": str(result.shares.get(investment.id, ZERO)),
                    "matches_expected": result.matches_expected,
                },
            )
        return investment

    # =========================================================================
    # Payable balance and payouts
    # =========================================================================

    def _balance(self, container: Container, investment: ContainerInvestment) -> PayableBalance:
        paid = quantize_amount(
            Decimal(self._selector.paid(container.id, investment.investor_id))
        )
        return compute_payable(
            container.total_purchase_usd,
            container.total_expenses_usd,
            investment.percentage_share,
            paid,
        )

    def compute_payable(self, container_id: UUID, investor_id: UUID) -> PayableBalance:
        container = self._session.get(Container, container_id)
        if container is None:
            raise NotFoundError("Container", container_id)
        investment = self._investment(container_id, investor_id)
        if investment is None:
            raise NotFoundError("ContainerInvestment", f"{container_id}/{investor_id}")
        return self._balance(container, investment)

    def record_payout(
        self,
        actor: Actor,
        container_id: UUID,
        investor_id: UUID,
        amount_usd: Decimal,
        note: str | None = None,
    ) -> InvestorPayout:
        """Pay an investor out of their available balance in one container."""
        self._roles.require(actor, Operation.INVESTORS_MANAGE)
        amount = to_amount(amount_usd, "amount_usd")
        if amount <= ZERO:
            raise ValidationError("Payout amount must be positive", field="amount_usd")

        with unit_of_work(self._session, "investments.payout", actor):
            period = self._periods.assert_open_for_date(self._clock.today(), actor.user_id)
            container = self._pipeline.lock_container(container_id)
            if container.is_in_transit:
                raise ContainerInTransitError(container.id, "record_payout")
            investment = self._investment(container.id, investor_id, for_update=True)
            if investment is None:
                raise NotFoundError("ContainerInvestment", f"{container_id}/{investor_id}")

            balance = self._balance(container, investment)
            try:
                check_payout(amount, balance, self._control.payout_epsilon)
            except OverpayError:
                logger.warning(
                    "payout_rejected",
                    extra={
                        "container_id": str(container.id),
                        "investor_id": str(investor_id),
                        "requested": str(amount),
                        "available": str(balance.available),
                    },
                )
                raise

            payout = InvestorPayout(
                container_id=container.id,
                investor_id=investor_id,
                period_id=period.id,
                amount_usd=amount,
                payout_date=self._clock.now(),
                note=note,
                created_by_id=actor.user_id,
            )
            self._session.add(payout)
            self._session.flush()

            self._audit.record(
                AuditAction.PAYOUT_RECORDED,
                "InvestorPayout",
                payout.id,
                actor.user_id,
                {
                    "container_id": container.id,
                    "investor_id": investor_id,
                    "period": period.label,
                    "amount_usd": amount,
                    "available_before": balance.available,
                },
            )
            logger.info(
                "payout_recorded",
                extra={
                    "payout_id": str(payout.id),
                    "container_id": str(container.id),
                    "investor_id": str(investor_id),
                    "amount_usd": str(amount),
                },
            )
        return payout

    # =========================================================================
    # Reads
    # =========================================================================

    def investor_summary(self, investor_id: UUID) -> InvestorSummary:
        if self._session.get(Investor, investor_id) is None:
            raise NotFoundError("Investor", investor_id)

        positions = []
        for row in self._selector.positions(investor_id=investor_id):
            balance = compute_payable(
                row.total_purchase_usd,
                row.total_expenses_usd,
                row.percentage_share,
                quantize_amount(Decimal(row.paid_usd)),
            )
            positions.append(
                InvestorPosition(
                    container_id=row.container_id,
                    container_name=row.container_name,
                    container_status=row.container_status,
                    invested_usd=row.invested_amount_usd,
                    percentage_share=row.percentage_share,
                    share_amount_usd=balance.share_amount,
                    profit_share_usd=realized_profit_share(
                        row.net_profit_usd, row.percentage_share
                    ),
                    paid_usd=balance.paid,
                    available_usd=balance.available,
                )
            )
        return InvestorSummary(investor_id=investor_id, positions=tuple(positions))
