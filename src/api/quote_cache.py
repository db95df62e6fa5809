from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from clients.price_proxy import parse_quote, quote_to_payload
from domain.assets import PriceQuote
from services.cache import Clock, utc_now

logger = logging.getLogger(__name__)

QUOTE_TTL = timedelta(minutes=5)
SAVE_INTERVAL = timedelta(minutes=5)


class QuoteCache:
    """Upstream quotes keyed by upper-cased symbol, optionally persisted as a JSON file.

    Entries older than ``ttl`` are no longer fresh but are kept so they can be served
    when the upstream API is throttling us.
    """

    def __init__(
        self,
        *,
        path: Path | None = None,
        ttl: timedelta = QUOTE_TTL,
        save_interval: timedelta = SAVE_INTERVAL,
        clock: Clock = utc_now,
    ) -> None:
        self.path = path
        self.ttl = ttl
        self.save_interval = save_interval
        self._clock = clock
        self._entries: dict[str, tuple[datetime, PriceQuote]] = {}
        self._last_saved: datetime = clock()
        self._dirty = False

    def fresh(self, symbol: str) -> PriceQuote | None:
        entry = self._entries.get(symbol.upper())
        if entry is None:
            return None
        fetched_at, quote = entry
        if self._clock() - fetched_at >= self.ttl:
            return None
        return quote

    def stale(self, symbol: str) -> PriceQuote | None:
        entry = self._entries.get(symbol.upper())
        return entry[1] if entry is not None else None

    def put(self, symbol: str, quote: PriceQuote) -> None:
        self._entries[symbol.upper()] = (self._clock(), quote)
        self._dirty = True
        if self._clock() - self._last_saved >= self.save_interval:
            self.save()

    def load(self) -> int:
        if self.path is None or not self.path.exists():
            return 0
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            for symbol, entry in raw.items():
                quote = parse_quote(symbol, entry.get("data"))
                if quote is None:
                    continue
                self._entries[symbol.upper()] = (datetime.fromisoformat(entry["timestamp"]), quote)
        except (OSError, ValueError, KeyError, AttributeError, ValidationError) as exc:
            logger.error("Error loading cache from disk: %s", exc)
            return len(self._entries)
        logger.info("Loaded %d cached items from disk", len(self._entries))
        return len(self._entries)

    def save(self) -> None:
        self._last_saved = self._clock()
        if self.path is None or not self._dirty:
            return
        payload = {
            symbol: {"timestamp": fetched_at.isoformat(), "data": quote_to_payload(quote, exact=True)}
            for symbol, (fetched_at, quote) in self._entries.items()
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload), encoding="utf-8")
        except OSError as exc:
            logger.error("Error saving cache to disk: %s", exc)
            return
        self._dirty = False
        logger.info("Saved %d cached items to disk", len(self._entries))

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["QUOTE_TTL", "QuoteCache"]
