"""Price sources for the live poller.

Defines the contract the poll-and-floor controller consumes and a ccxt
implementation that reads the last traded price from any supported
exchange. Controller code depends only on PriceSource.
"""

import math
from abc import ABC, abstractmethod

import ccxt
import ccxt.async_support as ccxt_async

from recorder.config import PriceSettings
from recorder.exceptions import FetchError, InvalidSample
from recorder.logging import get_logger

logger = get_logger(__name__)


class PriceSource(ABC):
    """Abstract base class for price sources."""

    @abstractmethod
    async def connect(self) -> None:
        """Acquire whatever the source needs before the first fetch."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources held by the source."""
        ...

    @abstractmethod
    async def fetch(self) -> float:
        """Return the current price.

        Raises:
            FetchError: The source is unreachable or returned malformed data.
            InvalidSample: The source returned NaN or an infinite price.
        """
        ...


class CcxtPriceSource(PriceSource):
    """Last traded price of one symbol via ccxt async."""

    def __init__(self, settings: PriceSettings) -> None:
        self._settings = settings
        exchange_class = getattr(ccxt_async, settings.exchange_id, None)
        if exchange_class is None:
            raise ValueError(f"Unknown ccxt exchange id: {settings.exchange_id}")
        self._exchange = exchange_class(
            {
                "enableRateLimit": True,
                "timeout": settings.request_timeout_ms,
            }
        )

    @property
    def symbol(self) -> str:
        return self._settings.symbol

    async def connect(self) -> None:
        logger.info(
            "price_source_ready",
            exchange=self._settings.exchange_id,
            symbol=self._settings.symbol,
        )

    async def close(self) -> None:
        """Clean up ccxt async resources. Must be called to avoid leaking the HTTP session."""
        await self._exchange.close()
        logger.info("price_source_closed", exchange=self._settings.exchange_id)

    async def fetch(self) -> float:
        try:
            ticker = await self._exchange.fetch_ticker(self._settings.symbol)
        except ccxt.BaseError as exc:
            raise FetchError(f"{self._settings.exchange_id}: {exc}") from exc

        raw = ticker.get("last") if isinstance(ticker, dict) else None
        if raw is None:
            raise FetchError(f"ticker for {self._settings.symbol} has no last price")
        try:
            price = float(raw)
        except (TypeError, ValueError) as exc:
            raise FetchError(f"malformed last price: {raw!r}") from exc

        if not math.isfinite(price):
            raise InvalidSample(f"non-finite price: {price!r}")
        if price <= 0:
            raise FetchError(f"non-positive price: {price!r}")
        return price
