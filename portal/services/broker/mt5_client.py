"""HTTP-клиент REST API торговой платформы MT5.

Апстрим без SLA и со свободной схемой: каждый запрос ограничен таймаутом,
после неудачи делается ровно одна повторная попытка с более длинным
таймаутом, все поля ответа приводятся защитно.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping

import aiohttp
from loguru import logger

from config.settings import get_settings
from portal.utils.numbers import to_decimal, to_text


class BrokerApiError(RuntimeError):
    """Брокерский API недоступен или вернул мусор."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status is None or self.status >= 500


def _pick(item: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in item and item[name] is not None:
            return item[name]
    return None


def _parse_time(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 10**11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class ClientProfile:
    """Профиль MT5-счёта (getClientProfile)."""

    account_id: str
    group: str | None
    account_type: str | None
    balance: Decimal
    equity: Decimal
    margin: Decimal
    profit: Decimal
    leverage: int | None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, account_id: str, data: Mapping[str, Any]) -> "ClientProfile":
        leverage = to_decimal(_pick(data, "Leverage", "leverage"))
        return cls(
            account_id=account_id,
            group=to_text(_pick(data, "Group", "group")) or None,
            account_type=to_text(_pick(data, "AccountType", "accountType")) or None,
            balance=to_decimal(_pick(data, "Balance", "balance")),
            equity=to_decimal(_pick(data, "Equity", "equity")),
            margin=to_decimal(_pick(data, "Margin", "margin")),
            profit=to_decimal(_pick(data, "Profit", "profit")),
            leverage=int(leverage) if leverage else None,
            raw=dict(data),
        )


@dataclass(slots=True)
class BrokerTrade:
    """Одна позиция из истории сделок, поля уже приведены."""

    order_id: str
    symbol: str
    order_type: str
    volume: Decimal
    open_price: Decimal
    close_price: Decimal
    profit: Decimal
    take_profit: Decimal
    stop_loss: Decimal
    close_time: datetime | None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, item: Mapping[str, Any]) -> "BrokerTrade":
        return cls(
            order_id=to_text(_pick(item, "OrderId", "orderId", "Ticket", "DealId")),
            symbol=to_text(_pick(item, "Symbol", "symbol")),
            order_type=to_text(_pick(item, "OrderType", "orderType", "Type")).lower(),
            volume=to_decimal(_pick(item, "Volume", "volume")),
            open_price=to_decimal(_pick(item, "OpenPrice", "openPrice")),
            close_price=to_decimal(_pick(item, "ClosePrice", "closePrice")),
            profit=to_decimal(_pick(item, "Profit", "profit")),
            take_profit=to_decimal(_pick(item, "TakeProfit", "takeProfit")),
            stop_loss=to_decimal(_pick(item, "StopLoss", "stopLoss")),
            close_time=_parse_time(_pick(item, "CloseTime", "closeTime")),
            raw=dict(item),
        )


def _format_date(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


class MT5Client:
    """Лёгкий aiohttp-клиент поверх MT5 REST."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeouts: tuple[float, ...] | None = None,
        page_size: int | None = None,
        max_pages: int | None = None,
    ) -> None:
        settings = get_settings().broker
        self._base_url = (base_url or str(settings.base_url)).rstrip("/")
        self._timeouts = timeouts or (settings.request_timeout_sec, settings.retry_timeout_sec)
        self._page_size = page_size or settings.page_size
        self._max_pages = max_pages or settings.max_pages
        self._session: aiohttp.ClientSession | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def start(self) -> None:
        """Инициализирует HTTP session."""

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Accept": "application/json"},
            )
            logger.info("MT5Client готов: {url}", url=self._base_url)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET с таймаутом; 5xx, таймаут и битый JSON дают одну повторную попытку."""

        await self.start()
        assert self._session is not None
        url = f"{self._base_url}{path}"
        last_error: Exception | None = None
        for attempt, timeout in enumerate(self._timeouts, start=1):
            try:
                async with self._session.get(
                    url,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=timeout),
                ) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        raise BrokerApiError(
                            f"MT5 {path} ответил HTTP {resp.status}: {text[:200]}",
                            status=resp.status,
                        )
                    return await resp.json(content_type=None)
            except BrokerApiError as exc:
                # 4xx не лечится повтором
                if not exc.retryable:
                    raise
                last_error = exc
            except (asyncio.TimeoutError, aiohttp.ClientError, ValueError) as exc:
                last_error = exc
            logger.debug(
                "MT5 {path}: попытка {attempt} не удалась ({error})",
                path=path,
                attempt=attempt,
                error=repr(last_error),
            )
        raise BrokerApiError(f"MT5 {path} недоступен: {last_error!r}") from last_error

    async def get_client_profile(self, account_id: str) -> ClientProfile | None:
        """Профиль счёта или None, если апстрим недоступен / Success=false."""

        try:
            payload = await self._request_json(f"/api/Users/{account_id}/getClientProfile")
        except BrokerApiError as exc:
            logger.warning(
                "Профиль MT5 {account} не получен: {error}", account=account_id, error=str(exc)
            )
            return None
        if not isinstance(payload, dict):
            return None
        success = _pick(payload, "Success", "success")
        data = _pick(payload, "Data", "data")
        if success is False or not isinstance(data, dict):
            return None
        return ClientProfile.from_payload(account_id, data)

    async def fetch_trades(
        self,
        account_id: str,
        from_date: datetime,
        to_date: datetime,
    ) -> list[BrokerTrade]:
        """История сделок за окно; страницы до исчерпания или max_pages.

        Ошибка апстрима пробрасывается как BrokerApiError: счёт пропускается
        в этом цикле целиком.
        """

        trades: list[BrokerTrade] = []
        for page in range(1, self._max_pages + 1):
            payload = await self._request_json(
                "/api/client/tradehistory/trades",
                params={
                    "accountId": account_id,
                    "page": page,
                    "pageSize": self._page_size,
                    "fromDate": _format_date(from_date),
                    "toDate": _format_date(to_date),
                },
            )
            items = self._extract_items(payload)
            for item in items:
                if not isinstance(item, dict):
                    continue
                try:
                    trades.append(BrokerTrade.from_payload(item))
                except (ArithmeticError, TypeError, ValueError, OSError) as exc:
                    logger.warning(
                        "MT5 {account}: битая сделка пропущена ({error})",
                        account=account_id,
                        error=repr(exc),
                    )
            if not self._has_more(payload, page, len(items)):
                break
        else:
            logger.warning(
                "MT5 {account}: достигнут лимит страниц {pages}, остаток пропущен",
                account=account_id,
                pages=self._max_pages,
            )
        return trades

    async def get_groups(self) -> list[str]:
        payload = await self._request_json("/api/Groups")
        items = payload if isinstance(payload, list) else self._extract_items(payload)
        groups = []
        for item in items:
            if isinstance(item, dict):
                name = to_text(_pick(item, "Group", "group", "Name", "name", "GroupId"))
            else:
                name = to_text(item)
            if name:
                groups.append(name)
        return groups

    @staticmethod
    def _extract_items(payload: Any) -> list[Any]:
        if not isinstance(payload, dict):
            return []
        items = _pick(payload, "Items", "items")
        if items is None:
            data = _pick(payload, "Data", "data")
            if isinstance(data, dict):
                items = _pick(data, "Items", "items")
            elif isinstance(data, list):
                items = data
        return items if isinstance(items, list) else []

    def _has_more(self, payload: Any, page: int, received: int) -> bool:
        if received == 0:
            return False
        if isinstance(payload, dict):
            total_pages = to_decimal(_pick(payload, "TotalPages", "totalPages"))
            if total_pages > 0:
                return page < int(total_pages)
            total_count = to_decimal(_pick(payload, "TotalCount", "totalCount"))
            if total_count > 0:
                return page * self._page_size < int(total_count)
        return received >= self._page_size


__all__ = ["BrokerApiError", "BrokerTrade", "ClientProfile", "MT5Client"]
