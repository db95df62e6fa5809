from decimal import Decimal
from pathlib import Path

from api.quote_cache import QuoteCache
from domain.assets import PriceQuote
from tests.helpers.clock import FakeClock


def _quote(symbol: str, price: str) -> PriceQuote:
    return PriceQuote(symbol=symbol, name=symbol, price=Decimal(price))


def test_fresh_and_stale_lookups(clock: FakeClock) -> None:
    cache = QuoteCache(clock=clock)
    cache.put("eth", _quote("ETH", "3000"))

    assert cache.fresh("ETH") is not None
    clock.advance(minutes=5)
    assert cache.fresh("ETH") is None
    assert cache.stale("eth") is not None
    assert len(cache) == 1


def test_put_saves_once_interval_elapsed(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "cache.json"
    cache = QuoteCache(path=path, clock=clock)

    cache.put("ETH", _quote("ETH", "3000"))
    assert not path.exists()

    clock.advance(minutes=5)
    cache.put("LINK", _quote("LINK", "14"))
    assert path.exists()

    reloaded = QuoteCache(path=path, clock=clock)
    assert reloaded.load() == 2


def test_load_ignores_unreadable_file(tmp_path: Path, clock: FakeClock) -> None:
    path = tmp_path / "cache.json"
    path.write_text("{broken")

    cache = QuoteCache(path=path, clock=clock)

    assert cache.load() == 0
    assert QuoteCache(path=tmp_path / "missing.json", clock=clock).load() == 0
