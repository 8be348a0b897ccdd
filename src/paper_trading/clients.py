"""Paper broker clients.

httpx clients for the Alpaca paper API and the Tradier sandbox, plus a
local TwelveData simulation. A paper order that the broker refuses or
cannot receive falls back to a simulated immediate fill, so a paper
trade is always recorded on every broker.
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from src.api_errors.exceptions import BrokerError
from src.logging_config import log_performance
from src.paper_trading.types import (
    BrokerClient,
    BrokerType,
    OrderRequest,
    OrderResponse,
    OrderSide,
    OrderStatus,
)
from src.settings import Settings, get_settings

logger = logging.getLogger(__name__)

_ALPHANUM = string.ascii_lowercase + string.digits


def _now_ms() -> int:
    return int(time.time() * 1000)


def _random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_ALPHANUM) for _ in range(length))


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        return default


@dataclass
class BrokerClientConfig:
    """Connection settings for one paper broker."""
    base_url: str
    api_key: str = ""
    api_secret: str = ""
    account_id: str = ""
    timeout_seconds: float = 10.0


class HttpBrokerClient:
    """Shared plumbing for REST paper brokers.

    Subclasses set ``name`` and implement the broker-specific calls.
    An ``http_client`` may be injected (tests use ``httpx.MockTransport``);
    otherwise one is created lazily and closed by ``aclose``.
    """

    name: BrokerType

    def __init__(self, config: BrokerClientConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def has_credentials(self) -> bool:
        return bool(self.config.api_key)

    def _headers(self) -> dict[str, str]:
        return {}

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._http_client

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Call the broker and return decoded JSON.

        Raises:
            BrokerError: non-2xx response.
            httpx.HTTPError: transport failure.
        """
        response = await self._client().request(
            method, f"{self.config.base_url}{path}", headers=self._headers(), **kwargs,
        )
        if response.is_error:
            raise BrokerError(self.name.value, f"API error {response.status_code} - {response.text}")
        return response.json() if response.content else {}

    def simulate_order(self, request: OrderRequest) -> OrderResponse:
        """Immediate paper fill at the limit price (100 when there is none)."""
        return OrderResponse(
            order_id=f"{self.name.value}-sim-{_now_ms()}",
            broker=self.name,
            status=OrderStatus.FILLED,
            filled_quantity=float(request.quantity),
            filled_price=request.limit_price or 100.0,
            raw_response={"simulated": True, "request": request.to_dict()},
        )

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None


# =====================================================================
# Alpaca
# =====================================================================

_ALPACA_STATUS = {
    "new": OrderStatus.PENDING,
    "accepted": OrderStatus.PENDING,
    "pending_new": OrderStatus.PENDING,
    "accepted_for_bidding": OrderStatus.PENDING,
    "filled": OrderStatus.FILLED,
    "partially_filled": OrderStatus.PARTIAL,
    "canceled": OrderStatus.CANCELLED,
    "cancelled": OrderStatus.CANCELLED,
    "expired": OrderStatus.CANCELLED,
    "rejected": OrderStatus.REJECTED,
    "pending_cancel": OrderStatus.PENDING,
    "pending_replace": OrderStatus.PENDING,
    "stopped": OrderStatus.CANCELLED,
    "suspended": OrderStatus.PENDING,
    "calculated": OrderStatus.PENDING,
}


class AlpacaPaperClient(HttpBrokerClient):
    """Alpaca paper trading API (commission free)."""

    name = BrokerType.ALPACA

    @property
    def has_credentials(self) -> bool:
        return bool(self.config.api_key and self.config.api_secret)

    def _headers(self) -> dict[str, str]:
        return {
            "APCA-API-KEY-ID": self.config.api_key,
            "APCA-API-SECRET-KEY": self.config.api_secret,
        }

    @staticmethod
    def map_status(status: Optional[str]) -> OrderStatus:
        return _ALPACA_STATUS.get((status or "").lower(), OrderStatus.PENDING)

    def _to_response(self, data: dict, fallback_id: str, fallback_price: float = 0.0) -> OrderResponse:
        return OrderResponse(
            order_id=str(data.get("id") or fallback_id),
            broker=self.name,
            status=self.map_status(data.get("status")),
            filled_quantity=_to_float(data.get("filled_qty")),
            filled_price=_to_float(data.get("filled_avg_price"), fallback_price),
            raw_response=data,
        )

    @log_performance(threshold_ms=2000)
    async def place_order(self, request: OrderRequest) -> OrderResponse:
        if not self.has_credentials:
            logger.debug("No Alpaca credentials, simulating %s", request.symbol)
            return self.simulate_order(request)

        order_data: dict[str, Any] = {
            "symbol": request.symbol,
            "qty": str(request.quantity),
            "side": request.side.value,
            "type": request.order_type.value,
            "time_in_force": request.time_in_force.value,
        }
        if request.limit_price:
            order_data["limit_price"] = str(request.limit_price)
        if request.stop_price:
            order_data["stop_price"] = str(request.stop_price)

        try:
            data = await self._request("POST", "/v2/orders", json=order_data)
        except (BrokerError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Alpaca order placement failed, simulating fill: %s", exc)
            return self.simulate_order(request)
        return self._to_response(data, f"alpaca-{_now_ms()}", request.limit_price or 0.0)

    async def get_order_status(self, order_id: str) -> OrderResponse:
        data = await self._request("GET", f"/v2/orders/{order_id}")
        return self._to_response(data, order_id)

    async def cancel_order(self, order_id: str) -> bool:
        try:
            await self._request("DELETE", f"/v2/orders/{order_id}")
        except (BrokerError, httpx.HTTPError) as exc:
            logger.warning("Alpaca cancel of %s failed: %s", order_id, exc)
            return False
        return True

    async def get_positions(self) -> list[dict[str, Any]]:
        try:
            data = await self._request("GET", "/v2/positions")
        except (BrokerError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Alpaca positions unavailable: %s", exc)
            return []
        return data if isinstance(data, list) else []

    async def get_account_info(self) -> Optional[dict[str, Any]]:
        try:
            return await self._request("GET", "/v2/account")
        except (BrokerError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Alpaca account unavailable: %s", exc)
            return None


# =====================================================================
# Tradier
# =====================================================================

_TRADIER_STATUS = {
    "pending": OrderStatus.PENDING,
    "open": OrderStatus.PENDING,
    "filled": OrderStatus.FILLED,
    "partially_filled": OrderStatus.PARTIAL,
    "cancelled": OrderStatus.CANCELLED,
    "rejected": OrderStatus.REJECTED,
    "expired": OrderStatus.CANCELLED,
}


def build_option_symbol(underlying: str, expiration: str, option_type: str, strike: float) -> str:
    """OCC-style option symbol, e.g. ``SPY   250117C00450000``."""
    expiry = expiration.replace("-", "")[2:]
    kind = "C" if option_type == "call" else "P"
    return f"{underlying.ljust(6)}{expiry}{kind}{int(round(strike * 1000)):08d}"


class TradierPaperClient(HttpBrokerClient):
    """Tradier sandbox brokerage (equities and options)."""

    name = BrokerType.TRADIER

    @property
    def has_credentials(self) -> bool:
        return bool(self.config.api_key and self.config.account_id)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Accept": "application/json",
        }

    @property
    def _orders_path(self) -> str:
        return f"/accounts/{self.config.account_id}/orders"

    @staticmethod
    def map_status(status: Optional[str]) -> OrderStatus:
        return _TRADIER_STATUS.get((status or "").lower(), OrderStatus.PENDING)

    def _to_response(self, data: dict, fallback_id: str, fallback_price: float = 0.0) -> OrderResponse:
        order = data.get("order") or {}
        return OrderResponse(
            order_id=str(order.get("id") or fallback_id),
            broker=self.name,
            status=self.map_status(order.get("status")),
            filled_quantity=_to_float(order.get("exec_quantity")),
            filled_price=_to_float(order.get("avg_fill_price"), fallback_price),
            raw_response=data,
        )

    @log_performance(threshold_ms=2000)
    async def place_order(self, request: OrderRequest) -> OrderResponse:
        if not self.has_credentials:
            logger.debug("No Tradier credentials, simulating %s", request.symbol)
            return self.simulate_order(request)

        params: dict[str, str] = {
            "class": "option" if request.is_option else "equity",
            "symbol": request.symbol,
            "side": request.side.value,
            "quantity": str(request.quantity),
            "type": request.order_type.value,
            "duration": request.time_in_force.value,
        }
        if request.limit_price:
            params["price"] = str(request.limit_price)
        if request.stop_price:
            params["stop"] = str(request.stop_price)
        if request.is_option and request.option_details:
            details = request.option_details
            symbol = build_option_symbol(
                request.symbol, details.expiration, details.option_type, details.strike,
            )
            params["symbol"] = symbol
            params["option_symbol"] = symbol

        try:
            data = await self._request("POST", self._orders_path, data=params)
        except (BrokerError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Tradier order placement failed, simulating fill: %s", exc)
            return self.simulate_order(request)
        return self._to_response(data, f"tradier-{_now_ms()}", request.limit_price or 0.0)

    async def get_order_status(self, order_id: str) -> OrderResponse:
        data = await self._request("GET", f"{self._orders_path}/{order_id}")
        return self._to_response(data, order_id)

    async def cancel_order(self, order_id: str) -> bool:
        try:
            await self._request("DELETE", f"{self._orders_path}/{order_id}")
        except (BrokerError, httpx.HTTPError) as exc:
            logger.warning("Tradier cancel of %s failed: %s", order_id, exc)
            return False
        return True

    async def get_positions(self) -> list[dict[str, Any]]:
        try:
            data = await self._request("GET", f"/accounts/{self.config.account_id}/positions")
        except (BrokerError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Tradier positions unavailable: %s", exc)
            return []
        positions = (data.get("positions") or {}).get("position") or []
        return positions if isinstance(positions, list) else [positions]

    async def get_account_info(self) -> Optional[dict[str, Any]]:
        try:
            data = await self._request("GET", f"/accounts/{self.config.account_id}/balances")
        except (BrokerError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Tradier account unavailable: %s", exc)
            return None
        return data.get("balances")


# =====================================================================
# TwelveData (local simulation)
# =====================================================================


class TwelveDataPaperClient(HttpBrokerClient):
    """Market-data provider used as a simulated broker.

    Orders fill immediately at the latest quoted price when an API key
    is configured and the quote succeeds, else at the limit price.
    Positions and account balances are tracked locally from $100k.
    """

    name = BrokerType.TWELVEDATA
    starting_cash = 100_000.0

    def __init__(self, config: BrokerClientConfig, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(config, http_client)
        self._orders: dict[str, OrderResponse] = {}
        self._positions: dict[str, dict[str, Any]] = {}

    async def _quote(self, symbol: str) -> Optional[float]:
        if not self.has_credentials:
            return None
        try:
            data = await self._request(
                "GET", "/price", params={"symbol": symbol, "apikey": self.config.api_key},
            )
        except (BrokerError, httpx.HTTPError, ValueError) as exc:
            logger.warning("TwelveData quote for %s unavailable, using limit price: %s", symbol, exc)
            return None
        price = _to_float(data.get("price")) if isinstance(data, dict) else 0.0
        return price or None

    async def place_order(self, request: OrderRequest) -> OrderResponse:
        order_id = f"twelvedata-{_now_ms()}-{_random_suffix()}"
        price = await self._quote(request.symbol) or request.limit_price or 100.0

        response = OrderResponse(
            order_id=order_id,
            broker=self.name,
            status=OrderStatus.FILLED,
            filled_quantity=float(request.quantity),
            filled_price=price,
            raw_response={"simulated": True, "request": request.to_dict()},
        )
        self._orders[order_id] = response
        self._apply_fill(request, price)
        logger.info("Simulated order %s: %s %d %s @ %.2f", order_id, request.side.value,
                    request.quantity, request.symbol, price)
        return response

    def _apply_fill(self, request: OrderRequest, price: float) -> None:
        key = f"{request.symbol}-{request.instrument_type}"
        position = self._positions.get(key)
        if request.side == OrderSide.BUY:
            if position is None:
                self._positions[key] = {
                    "symbol": request.symbol,
                    "quantity": request.quantity,
                    "avg_price": price,
                    "instrument_type": request.instrument_type,
                    "opened_at": time.time(),
                }
            else:
                total = position["quantity"] + request.quantity
                position["avg_price"] = (
                    position["avg_price"] * position["quantity"] + price * request.quantity
                ) / total
                position["quantity"] = total
        elif position is not None:
            position["quantity"] -= request.quantity
            if position["quantity"] <= 0:
                del self._positions[key]

    async def get_order_status(self, order_id: str) -> OrderResponse:
        order = self._orders.get(order_id)
        if order is None:
            raise BrokerError(self.name.value, f"Order {order_id} not found")
        return order

    async def cancel_order(self, order_id: str) -> bool:
        order = self._orders.get(order_id)
        if order is None or order.status != OrderStatus.PENDING:
            return False
        order.status = OrderStatus.CANCELLED
        return True

    async def get_positions(self) -> list[dict[str, Any]]:
        return [dict(p) for p in self._positions.values()]

    async def get_account_info(self) -> Optional[dict[str, Any]]:
        invested = sum(p["quantity"] * p["avg_price"] for p in self._positions.values())
        return {
            "account_id": "twelvedata-paper",
            "cash": self.starting_cash - invested,
            "portfolio_value": invested,
            "total_value": self.starting_cash,
            "buying_power": self.starting_cash - invested,
            "simulated": True,
        }

    def clear(self) -> None:
        self._orders.clear()
        self._positions.clear()


# =====================================================================
# Factory
# =====================================================================


def build_clients(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> list[BrokerClient]:
    """Clients for every enabled broker, in configured order."""
    settings = settings or get_settings()
    timeout = settings.broker_timeout_seconds
    factories = {
        BrokerType.TRADIER.value: lambda: TradierPaperClient(BrokerClientConfig(
            base_url=settings.tradier_base_url,
            api_key=settings.tradier_api_key,
            account_id=settings.tradier_account_id,
            timeout_seconds=timeout,
        ), http_client),
        BrokerType.TWELVEDATA.value: lambda: TwelveDataPaperClient(BrokerClientConfig(
            base_url=settings.twelvedata_base_url,
            api_key=settings.twelvedata_api_key,
            timeout_seconds=timeout,
        ), http_client),
        BrokerType.ALPACA.value: lambda: AlpacaPaperClient(BrokerClientConfig(
            base_url=settings.alpaca_base_url,
            api_key=settings.alpaca_api_key,
            api_secret=settings.alpaca_api_secret,
            timeout_seconds=timeout,
        ), http_client),
    }
    clients: list[BrokerClient] = []
    for name in settings.enabled_brokers:
        factory = factories.get(name.lower())
        if factory is None:
            logger.warning("Unknown broker %r in enabled_brokers, skipping", name)
            continue
        clients.append(factory())
    return clients
