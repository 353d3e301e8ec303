"""
Table-Backed Exchange Rates

An ExchangeRateProvider over a table of ExchangeRate rows, the way rates
are stored by the platform's daily rate sync (one row per base/target pair).

Lookup order:
1. Same currency -> identity
2. Direct rate (from -> to)
3. Inverse rate (to -> from)
4. Cross rate through a shared base currency
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from teamledger.exceptions import DependencyError
from teamledger.models.ledger import ExchangeRate
from teamledger.services.providers.interface import Conversion, ExchangeRateProvider


class TableExchangeRateProvider(ExchangeRateProvider):
    """Exchange rates served from an in-memory rate table."""

    def __init__(self, rates: Optional[Iterable[ExchangeRate]] = None):
        self._rates: dict[tuple[str, str], ExchangeRate] = {}
        for rate in rates or []:
            self.upsert(rate)

    def upsert(self, rate: ExchangeRate) -> None:
        """Insert or replace the rate for (base, target)."""
        self._rates[(rate.base.upper(), rate.target.upper())] = rate

    def _rate(self, base: str, target: str) -> Optional[tuple[Decimal, date]]:
        direct = self._rates.get((base, target))
        if direct is not None:
            return direct.rate, direct.updated_at.date()
        inverse = self._rates.get((target, base))
        if inverse is not None:
            return Decimal(1) / inverse.rate, inverse.updated_at.date()
        return None

    async def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
        as_of: date,
    ) -> Conversion:
        source, target = from_currency.upper(), to_currency.upper()
        if source == target:
            return Conversion(amount=amount, rate=Decimal(1), rate_date=as_of)

        found = self._rate(source, target)
        if found is None:
            # Cross rate through any base quoted against both currencies
            for pivot in {base for base, _ in self._rates}:
                leg_in = self._rate(source, pivot)
                leg_out = self._rate(pivot, target)
                if leg_in and leg_out:
                    found = (leg_in[0] * leg_out[0], min(leg_in[1], leg_out[1]))
                    break

        if found is None:
            raise DependencyError(
                "exchange_rates",
                f"No exchange rate for {source}->{target}",
                {"from": source, "to": target},
            )

        rate, rate_date = found
        return Conversion(amount=amount * rate, rate=rate, rate_date=rate_date)
