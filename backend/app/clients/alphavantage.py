"""AlphaVantage FX client used as the realtime bar and price feed."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

from app.config import Settings, get_settings
from app.storage.raw_feed import parse_csv
from core.errors import FeedError, InvalidArgumentError
from core.models.bar import Bar
from core.models.resolution import Resolution

logger = logging.getLogger(__name__)

INTRADAY_INTERVALS = {
    Resolution.M30: "30min",
    Resolution.M15: "15min",
    Resolution.M5: "5min",
    Resolution.M1: "1min",
}


def _now_ms() -> int:
    return int(time.time() * 1000)


class AlphaVantageFeed:
    """Synchronous AlphaVantage client.

    Bars come back newest first; they are returned ascending with the
    still-forming last bar dropped.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.settings = settings or get_settings()
        self._clock = clock
        self._client = httpx.Client(
            timeout=self.settings.request_timeout,
            transport=transport,
        )

    def __enter__(self) -> AlphaVantageFeed:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if not self._client.is_closed:
            self._client.close()

    def _request(self, params: dict[str, Any]) -> httpx.Response:
        params = {**params, "apikey": self.settings.alphavantage_api_key}
        response = self._client.get(self.settings.alphavantage_url, params=params)
        response.raise_for_status()
        return response

    def _bar_params(self, resolution: Resolution) -> dict[str, Any]:
        params = {
            "from_symbol": self.settings.from_symbol,
            "to_symbol": self.settings.to_symbol,
            "outputsize": "full",
            "datatype": "csv",
        }
        if resolution is Resolution.D1:
            return {"function": "FX_DAILY", **params}
        if resolution in INTRADAY_INTERVALS:
            return {"function": "FX_INTRADAY", "interval": INTRADAY_INTERVALS[resolution], **params}
        raise InvalidArgumentError(f"The feed does not serve {resolution.label} bars")

    def fetch_bars(self, resolution: Resolution) -> list[Bar]:
        """Completed bars of one resolution, ascending.

        Raises:
            InvalidArgumentError: For resolutions the feed does not serve.
            FeedError: If the feed answers with an error document.
            httpx.HTTPError: On transport or HTTP status failures.
        """
        params = self._bar_params(resolution)
        text = self._request(params).text
        if text.lstrip().startswith("{"):
            raise FeedError(f"Feed returned an error for {resolution.label}: {text.strip()[:200]}")

        bars = parse_csv(text, resolution, source=f"alphavantage {resolution.label}")
        bars.reverse()
        if bars and bars[-1].end > self._clock():
            bars.pop()
        logger.info(f"Fetched {len(bars):,} {resolution.label} bars")
        return bars

    def fetch_current_price(self) -> float:
        payload = self._request(
            {
                "function": "CURRENCY_EXCHANGE_RATE",
                "from_currency": self.settings.from_symbol,
                "to_currency": self.settings.to_symbol,
            }
        ).json()
        try:
            price = float(payload["Realtime Currency Exchange Rate"]["5. Exchange Rate"])
        except (KeyError, TypeError, ValueError):
            raise FeedError(f"Unexpected exchange rate payload: {payload!r:.200}") from None
        logger.info(f"Current {self.settings.from_symbol}/{self.settings.to_symbol} price: {price}")
        return price
