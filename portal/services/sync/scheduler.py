"""Авто-синхронизация сделок всех одобренных партнёров.

Состояния: idle -> running (один проход по партнёрам) -> idle. Тик, пришедший
во время running, пропускается. ``tick()`` можно вызвать напрямую, без цикла.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import get_settings
from portal.models import IBPartner
from portal.repositories import list_approved_partners
from portal.services.broker.ingestion import IngestionReport, SyncWindow, TradeIngestionService
from portal.services.commission.aggregator import CommissionAggregator
from portal.services.commission.group_keys import RuleMap
from portal.services.commission.rule_store import CommissionRuleStore
from portal.services.core.accounts import AccountDirectory, AccountRef


class SchedulerState(str):
    IDLE = "idle"
    RUNNING = "running"


@dataclass(slots=True)
class SyncTickReport:
    started_at: datetime
    finished_at: datetime | None = None
    skipped: bool = False
    partners: int = 0
    accounts: int = 0
    trades: int = 0
    failures: int = 0
    reports: list[IngestionReport] = field(default_factory=list, repr=False)

    def as_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped": self.skipped,
            "partners": self.partners,
            "accounts": self.accounts,
            "trades": self.trades,
            "failures": self.failures,
        }


class TradeSyncScheduler:
    """Фоновый цикл синхронизации MT5 -> леджер -> снапшоты комиссий."""

    def __init__(
        self,
        *,
        ingestion: TradeIngestionService,
        rule_store: CommissionRuleStore,
        accounts: AccountDirectory,
        aggregator: CommissionAggregator,
    ) -> None:
        cfg = get_settings().sync
        self._interval = cfg.interval_sec
        self._initial_delay = cfg.initial_delay_sec
        self._lookback_days = cfg.lookback_days
        self._concurrency = cfg.concurrency
        self._ingestion = ingestion
        self._rules = rule_store
        self._accounts = accounts
        self._aggregator = aggregator
        self._state = SchedulerState.IDLE
        self._task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()
        self._last_report: SyncTickReport | None = None
        self._session_maker: async_sessionmaker[AsyncSession] | None = None

    def set_session_maker(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    def _require_session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is None:
            raise RuntimeError("TradeSyncScheduler: session_maker не задан")
        return self._session_maker

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    @property
    def last_report(self) -> SyncTickReport | None:
        return self._last_report

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run_loop(), name="trade-sync-loop")
        logger.info(
            "Авто-синхронизация запущена: каждые {interval}s, первая через {delay}s",
            interval=self._interval,
            delay=self._initial_delay,
        )

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Авто-синхронизация остановлена")

    async def _sleep(self, seconds: float) -> bool:
        """Ждёт интервал; True, если за это время пришёл stop."""

        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run_loop(self) -> None:
        if await self._sleep(self._initial_delay):
            return
        while not self._stop.is_set():
            try:
                await self.tick()
            except Exception as exc:  # noqa: BLE001
                logger.exception("Тик авто-синхронизации упал: {error}", error=exc)
            if await self._sleep(self._interval):
                return

    async def tick(self) -> SyncTickReport:
        """Один проход по всем одобренным партнёрам."""

        report = SyncTickReport(started_at=datetime.now(timezone.utc))
        if self._state == SchedulerState.RUNNING:
            report.skipped = True
            report.finished_at = report.started_at
            logger.warning("Предыдущая синхронизация ещё идёт, тик пропущен")
            return report

        self._state = SchedulerState.RUNNING
        try:
            async with self._require_session_maker()() as session:
                partners = await list_approved_partners(session)
            report.partners = len(partners)
            for partner in partners:
                try:
                    results = await self.sync_partner(partner)
                except Exception as exc:  # noqa: BLE001
                    report.failures += 1
                    logger.exception(
                        "Синхронизация партнёра {partner} упала: {error}",
                        partner=partner.id,
                        error=exc,
                    )
                    continue
                report.reports.extend(results)
                report.accounts += len(results)
                report.trades += sum(result.saved for result in results)
                report.failures += sum(1 for result in results if not result.ok)
        finally:
            self._state = SchedulerState.IDLE
            report.finished_at = datetime.now(timezone.utc)
            self._last_report = report

        logger.info(
            "Авто-синхронизация: партнёров {partners}, счетов {accounts}, сделок {trades}, ошибок {failures}",
            partners=report.partners,
            accounts=report.accounts,
            trades=report.trades,
            failures=report.failures,
        )
        return report

    async def sync_partner(
        self, partner: IBPartner, *, lookback_days: int | None = None
    ) -> list[IngestionReport]:
        """Все живые счета партнёра; карта правил читается один раз."""

        async with self._require_session_maker()() as session:
            rule_map = await self._rules.load(session, partner)
            accounts = await self._accounts.sync_targets(session, partner)
        if not accounts:
            logger.debug("У партнёра {partner} нет счетов для синхронизации", partner=partner.id)
            return []

        window = SyncWindow.trailing(lookback_days or self._lookback_days)
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _run(account: AccountRef) -> IngestionReport:
            async with semaphore:
                return await self.sync_account(account, window, rule_map)

        results = await asyncio.gather(*(_run(account) for account in accounts), return_exceptions=True)
        reports: list[IngestionReport] = []
        for account, result in zip(accounts, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.opt(exception=result).error(
                    "Синхронизация счёта {account} упала: {error}",
                    account=account.account_id,
                    error=result,
                )
                reports.append(IngestionReport(account_id=account.account_id, error=str(result)))
                continue
            reports.append(result)

        await self._aggregator.refresh_snapshot(partner)
        return reports

    async def sync_partner_account(
        self, partner: IBPartner, account_id: str, *, lookback_days: int | None = None
    ) -> IngestionReport:
        """Ручная синхронизация одного счёта в пользу партнёра."""

        async with self._require_session_maker()() as session:
            rule_map = await self._rules.load(session, partner)
            account = await self._accounts.resolve(session, account_id, partner.id)  # type: ignore[arg-type]
        window = SyncWindow.trailing(lookback_days or self._lookback_days)
        report = await self.sync_account(account, window, rule_map)
        await self._aggregator.refresh_snapshot(partner)
        return report

    async def sync_account(
        self, account: AccountRef, window: SyncWindow, rule_map: RuleMap
    ) -> IngestionReport:
        report = await self._ingestion.ingest_account(account, window, rule_map)
        if report.ok and report.skipped_reason is None:
            await self._ingestion.recompute_account_commission(account.account_id, rule_map)
        return report


__all__ = ["SchedulerState", "SyncTickReport", "TradeSyncScheduler"]
