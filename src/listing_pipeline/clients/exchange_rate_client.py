"""
Currency conversion to USD.

Rates come from the Frankfurter API (ECB reference rates, no API key). AED
is pegged and never looked up. Rates are cached in process per
(currency, date); a failed lookup is not cached so it is retried next time.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal, localcontext

import httpx
import structlog

from ..config import config

logger = structlog.get_logger(__name__)

AED_PER_USD = Decimal('3.6725')
_AED_TO_USD = (Decimal(1) / AED_PER_USD).quantize(Decimal('0.0000000001'), rounding=ROUND_HALF_UP)


class ExchangeRateClient:
    """
    Async USD rate lookups.

    ``get_rate_to_usd`` returns the multiplier such that
    ``amount * rate`` is the USD value, or None when unavailable.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or config.EXCHANGE_RATE_BASE_URL).rstrip('/')
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._cache: dict[tuple[str, date], Decimal] = {}

    async def get_rate_to_usd(self, currency: str | None, on_date: date) -> Decimal | None:
        if currency is None or not currency.strip():
            return None

        code = currency.strip().upper()
        if code == 'USD':
            return Decimal(1)
        if code == 'AED':
            return _AED_TO_USD

        cached = self._cache.get((code, on_date))
        if cached is not None:
            return cached

        url = f'{self.base_url}/{on_date.isoformat()}'
        try:
            response = await self._client.get(url, params={'from': code, 'to': 'USD'})
            response.raise_for_status()
            usd_rate = response.json().get('rates', {}).get('USD')
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                'exchange_rate.lookup_failed',
                currency=code,
                date=on_date.isoformat(),
                error=str(e),
            )
            return None

        if usd_rate is None:
            logger.warning('exchange_rate.no_usd_rate', currency=code, date=on_date.isoformat())
            return None

        rate = Decimal(str(usd_rate))
        self._cache[(code, on_date)] = rate
        return rate

    async def compute_usd_price(
        self,
        amount: Decimal | None,
        currency: str | None,
        on_date: date,
    ) -> Decimal | None:
        """USD equivalent rounded to 4 places, or None if the rate is unavailable."""
        if amount is None or currency is None:
            return None

        rate = await self.get_rate_to_usd(currency, on_date)
        if rate is None:
            return None

        with localcontext() as ctx:
            ctx.prec = 10
            usd = amount * rate
        return usd.quantize(Decimal('0.0001'), rounding=ROUND_HALF_UP)

    async def close(self) -> None:
        await self._client.aclose()
