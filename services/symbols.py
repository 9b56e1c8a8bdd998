from __future__ import annotations

from typing import FrozenSet, Iterable, List, MutableMapping, Optional

from utils.exceptions import UnsupportedSymbolError

DEFAULT_UNSUPPORTED_SYMBOLS = frozenset({"TRY", "PLN", "THB", "MXN"})


class UnsupportedSymbolFilter:
    """Fixed denylist of currency codes the gateway refuses to serve."""

    def __init__(self, symbols: Optional[Iterable[str]] = None) -> None:
        source = DEFAULT_UNSUPPORTED_SYMBOLS if symbols is None else symbols
        self._unsupported: FrozenSet[str] = frozenset(s.strip().upper() for s in source if s.strip())

    @property
    def unsupported(self) -> FrozenSet[str]:
        return self._unsupported

    def strip(self, rates: MutableMapping[str, object]) -> None:
        """Remove every denylisted code from a rates mapping, in place."""
        for symbol in self._unsupported:
            rates.pop(symbol, None)

    def find_unsupported(self, symbols: Optional[Iterable[str]]) -> List[str]:
        if not symbols:
            return []
        return [s for s in symbols if s and s.strip().upper() in self._unsupported]

    def ensure_supported(self, symbols: Optional[Iterable[str]]) -> None:
        offending = self.find_unsupported(symbols)
        if offending:
            raise UnsupportedSymbolError(symbols or [], offending)
