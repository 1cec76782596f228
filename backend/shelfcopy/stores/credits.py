"""Credit ledger: the per-shop metered balance the pipeline draws from.

Consumption is clamped to what is available and serialized per tenant, so
concurrent units of the same shop can never jointly drive ``available``
below zero. ``total`` tracks the granted baseline and is not an upper bound
on ``available``.
"""

from __future__ import annotations

import asyncio
import calendar
import math
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shelfcopy.errors import NotFoundError
from shelfcopy.models.contracts import CreditBalance, CreditsSummary, Plan
from shelfcopy.models.db import CreditLedgerRow

log = structlog.get_logger("credits")

PLAN_ALLOWANCES: dict[str, int] = {
    "FREE": 50,
    "BASIC": 2500,
    "STANDARD": 10000,
    "PRO": 50000,
}

USAGE_TREND_WINDOW = timedelta(days=7)


def plan_allowance(plan: str) -> int:
    """Credits granted per period; unknown plans get the FREE allowance."""
    return PLAN_ALLOWANCES.get(plan, PLAN_ALLOWANCES["FREE"])


def add_one_period(moment: datetime) -> datetime:
    """Same day next month, clamped to the last day of a shorter month."""
    year = moment.year + moment.month // 12
    month = moment.month % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def credits_summary(balance: CreditBalance, used_last_week: int, now: datetime) -> CreditsSummary:
    """Build the dashboard summary for one ledger."""
    seconds_left = (balance.reset_date - now).total_seconds()
    days_until_reset = max(0, math.ceil(seconds_left / 86400))
    usage_trend = round(used_last_week / plan_allowance(balance.plan) * 100)
    return CreditsSummary(
        available=balance.available,
        total=balance.total,
        days_until_reset=days_until_reset,
        usage_trend=usage_trend,
        plan=balance.plan,
    )


class CreditLedger(ABC):
    """Per-tenant metered balance."""

    @abstractmethod
    async def initialize(self, tenant_id: str, plan: Plan = "FREE") -> CreditBalance: ...

    @abstractmethod
    async def get_balance(self, tenant_id: str) -> CreditBalance:
        """Raises NotFoundError when the tenant has no ledger."""

    @abstractmethod
    async def check(self, tenant_id: str, required: int) -> bool:
        """True iff ``available >= required``. Missing ledger is False."""

    @abstractmethod
    async def consume(self, tenant_id: str, amount: int) -> int:
        """Decrement by ``min(amount, available)`` and return the decrement."""

    @abstractmethod
    async def grant(self, tenant_id: str, amount: int) -> CreditBalance: ...

    @abstractmethod
    async def reset_to_plan_allowance(self, tenant_id: str) -> CreditBalance: ...

    @abstractmethod
    async def change_plan(self, tenant_id: str, plan: Plan) -> CreditBalance: ...


class InMemoryCreditLedger(CreditLedger):
    """Process-local ledger with one asyncio lock per tenant."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._balances: dict[str, CreditBalance] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks[tenant_id] = asyncio.Lock()
        return lock

    def _require(self, tenant_id: str) -> CreditBalance:
        balance = self._balances.get(tenant_id)
        if balance is None:
            raise NotFoundError(f"No credits found for tenant {tenant_id}")
        return balance

    async def initialize(self, tenant_id: str, plan: Plan = "FREE") -> CreditBalance:
        now = self._clock()
        allowance = plan_allowance(plan)
        async with self._lock(tenant_id):
            balance = CreditBalance(
                tenant_id=tenant_id,
                plan=plan,
                available=allowance,
                total=allowance,
                reset_date=add_one_period(now),
                last_granted_at=now,
            )
            self._balances[tenant_id] = balance
        return balance.model_copy()

    async def get_balance(self, tenant_id: str) -> CreditBalance:
        return self._require(tenant_id).model_copy()

    async def check(self, tenant_id: str, required: int) -> bool:
        balance = self._balances.get(tenant_id)
        if balance is None:
            return False
        return balance.available >= required

    async def consume(self, tenant_id: str, amount: int) -> int:
        async with self._lock(tenant_id):
            balance = self._require(tenant_id)
            to_use = min(amount, balance.available)
            if to_use <= 0:
                return 0
            balance.available -= to_use
        log.debug("credits_consumed", tenant_id=tenant_id, requested=amount, consumed=to_use)
        return to_use

    async def grant(self, tenant_id: str, amount: int) -> CreditBalance:
        if amount <= 0:
            raise ValueError("Grant amount must be positive")
        async with self._lock(tenant_id):
            balance = self._require(tenant_id)
            balance.available += amount
            balance.total += amount
            balance.last_granted_at = self._clock()
        log.info("credits_granted", tenant_id=tenant_id, amount=amount)
        return balance.model_copy()

    async def reset_to_plan_allowance(self, tenant_id: str) -> CreditBalance:
        async with self._lock(tenant_id):
            balance = self._require(tenant_id)
            allowance = plan_allowance(balance.plan)
            balance.available = allowance
            balance.total = allowance
            balance.reset_date = add_one_period(self._clock())
        log.info("credits_reset", tenant_id=tenant_id, plan=balance.plan, allowance=allowance)
        return balance.model_copy()

    async def change_plan(self, tenant_id: str, plan: Plan) -> CreditBalance:
        async with self._lock(tenant_id):
            self._require(tenant_id).plan = plan
        return await self.reset_to_plan_allowance(tenant_id)


def _row_to_balance(row: CreditLedgerRow) -> CreditBalance:
    return CreditBalance(
        tenant_id=row.shop_id,
        plan=row.plan,  # type: ignore[arg-type]
        available=row.available,
        total=row.total,
        reset_date=row.reset_date,
        last_granted_at=row.last_granted_at,
    )


class SqlCreditLedger(CreditLedger):
    """Postgres ledger. Consumption is a compare-and-swap on ``available``.

    Each attempt reads the balance, then updates only if the row still holds
    the value it read. A failed swap means another unit consumed first; the
    loop re-reads and clamps against the new balance.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def _load(self, session: AsyncSession, tenant_id: str) -> CreditLedgerRow:
        row = await session.scalar(
            select(CreditLedgerRow).where(CreditLedgerRow.shop_id == tenant_id)
        )
        if row is None:
            raise NotFoundError(f"No credits found for tenant {tenant_id}")
        return row

    async def initialize(self, tenant_id: str, plan: Plan = "FREE") -> CreditBalance:
        now = self._clock()
        allowance = plan_allowance(plan)
        row = CreditLedgerRow(
            shop_id=tenant_id,
            plan=plan,
            available=allowance,
            total=allowance,
            reset_date=add_one_period(now),
            last_granted_at=now,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
        return _row_to_balance(row)

    async def get_balance(self, tenant_id: str) -> CreditBalance:
        async with self._session_factory() as session:
            return _row_to_balance(await self._load(session, tenant_id))

    async def check(self, tenant_id: str, required: int) -> bool:
        async with self._session_factory() as session:
            available = await session.scalar(
                select(CreditLedgerRow.available).where(CreditLedgerRow.shop_id == tenant_id)
            )
        return available is not None and available >= required

    async def consume(self, tenant_id: str, amount: int) -> int:
        async with self._session_factory() as session:
            while True:
                observed = await session.scalar(
                    select(CreditLedgerRow.available).where(CreditLedgerRow.shop_id == tenant_id)
                )
                if observed is None:
                    raise NotFoundError(f"No credits found for tenant {tenant_id}")
                to_use = min(amount, observed)
                if to_use <= 0:
                    return 0
                result = await session.execute(
                    update(CreditLedgerRow)
                    .where(
                        CreditLedgerRow.shop_id == tenant_id,
                        CreditLedgerRow.available == observed,
                    )
                    .values(available=CreditLedgerRow.available - to_use)
                )
                await session.commit()
                if result.rowcount == 1:
                    log.debug(
                        "credits_consumed", tenant_id=tenant_id, requested=amount, consumed=to_use
                    )
                    return to_use
                log.debug("credits_consume_contended", tenant_id=tenant_id, observed=observed)

    async def grant(self, tenant_id: str, amount: int) -> CreditBalance:
        if amount <= 0:
            raise ValueError("Grant amount must be positive")
        async with self._session_factory() as session:
            result = await session.execute(
                update(CreditLedgerRow)
                .where(CreditLedgerRow.shop_id == tenant_id)
                .values(
                    available=CreditLedgerRow.available + amount,
                    total=CreditLedgerRow.total + amount,
                    last_granted_at=self._clock(),
                )
            )
            if result.rowcount != 1:
                await session.rollback()
                raise NotFoundError(f"No credits found for tenant {tenant_id}")
            await session.commit()
            balance = _row_to_balance(await self._load(session, tenant_id))
        log.info("credits_granted", tenant_id=tenant_id, amount=amount)
        return balance

    async def reset_to_plan_allowance(self, tenant_id: str) -> CreditBalance:
        async with self._session_factory() as session:
            row = await self._load(session, tenant_id)
            allowance = plan_allowance(row.plan)
            await session.execute(
                update(CreditLedgerRow)
                .where(CreditLedgerRow.shop_id == tenant_id)
                .values(
                    available=allowance,
                    total=allowance,
                    reset_date=add_one_period(self._clock()),
                )
            )
            await session.commit()
            await session.refresh(row)
            balance = _row_to_balance(row)
        log.info("credits_reset", tenant_id=tenant_id, plan=balance.plan, allowance=allowance)
        return balance

    async def change_plan(self, tenant_id: str, plan: Plan) -> CreditBalance:
        async with self._session_factory() as session:
            result = await session.execute(
                update(CreditLedgerRow).where(CreditLedgerRow.shop_id == tenant_id).values(plan=plan)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise NotFoundError(f"No credits found for tenant {tenant_id}")
            await session.commit()
        return await self.reset_to_plan_allowance(tenant_id)
