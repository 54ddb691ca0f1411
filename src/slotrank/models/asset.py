from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

from slotrank.errors import ValidationError

_SYMBOL_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9./\-]{0,19}$")


class AssetClass(StrEnum):
    CRYPTO = "crypto"
    STOCK = "stock"
    FOREX = "forex"


@dataclass
class Asset:
    symbol: str
    name: str
    asset_class: AssetClass
    is_active: bool = True

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "type": self.asset_class.value,
            "isActive": self.is_active,
        }


DEFAULT_ASSETS: list[Asset] = [
    Asset("bitcoin", "Bitcoin", AssetClass.CRYPTO),
    Asset("ethereum", "Ethereum", AssetClass.CRYPTO),
    Asset("cardano", "Cardano", AssetClass.CRYPTO),
    Asset("solana", "Solana", AssetClass.CRYPTO),
    Asset("polkadot", "Polkadot", AssetClass.CRYPTO),
    Asset("AAPL", "Apple Inc.", AssetClass.STOCK),
    Asset("MSFT", "Microsoft Corporation", AssetClass.STOCK),
    Asset("GOOGL", "Alphabet Inc.", AssetClass.STOCK),
    Asset("AMZN", "Amazon.com Inc.", AssetClass.STOCK),
    Asset("TSLA", "Tesla Inc.", AssetClass.STOCK),
    Asset("EUR/USD", "Euro to US Dollar", AssetClass.FOREX),
    Asset("USD/JPY", "US Dollar to Japanese Yen", AssetClass.FOREX),
    Asset("GBP/USD", "British Pound to US Dollar", AssetClass.FOREX),
    Asset("USD/CHF", "US Dollar to Swiss Franc", AssetClass.FOREX),
    Asset("AUD/USD", "Australian Dollar to US Dollar", AssetClass.FOREX),
    Asset("USD/CAD", "US Dollar to Canadian Dollar", AssetClass.FOREX),
]


def validate_symbol(symbol: str) -> str:
    """Return the trimmed symbol or raise ValidationError if malformed."""
    cleaned = (symbol or "").strip()
    if not _SYMBOL_RE.match(cleaned):
        raise ValidationError(f"Malformed asset symbol {symbol!r}")
    return cleaned
