import pytest

from neon_pr.config import Settings
from neon_pr.ledger import Ledger
from neon_pr.models import RawItem

# Variables that change behaviour at call time (not only at import).
_RUNTIME_ENV = (
    "SQLITE_WAL_MODE",
    "SQLITE_SYNCHRONOUS",
    "SQLITE_CACHE_SIZE",
    "LOG_ROTATION_DAYS",
    "DOTENV_FILE",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    for name in _RUNTIME_ENV:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at tmp paths, log sink, no enrichment, no venue filter."""
    return Settings(
        alert_threshold=0.5,
        concurrency=2,
        db_path=tmp_path / "events.db",
        data_dir=tmp_path,
        feature_enrichment=False,
        alert_sink="log",
        discord_webhook_url="",
        min_market_cap=None,
        max_market_cap=None,
        include_unknown_mkt_cap=True,
        allowed_exchanges=["*"],
    )


@pytest.fixture
def ledger(tmp_path):
    led = Ledger(tmp_path / "ledger.db", cache_size=64)
    yield led
    led.close()


@pytest.fixture
def make_item():
    counter = {"n": 0}

    def _make(
        title="Acme Corp enters into a definitive merger agreement",
        summary="",
        url="https://www.globenewswire.com/news-release/1",
        source="globenewswire",
        symbols=("ACME",),
        published_at="2024-05-01T12:00:00+00:00",
        id=None,
    ):
        counter["n"] += 1
        return RawItem(
            id=id or f"item-{counter['n']}",
            title=title,
            summary=summary,
            source=source,
            url=url,
            published_at=published_at,
            symbols=tuple(symbols),
        )

    return _make
