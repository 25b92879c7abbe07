"""NEON·PR runner."""

from __future__ import annotations

# stdlib
import argparse
import asyncio
import json
import os
import signal
import sys
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from dotenv import load_dotenv

# Load .env early so config is available to subsequent imports.
# If DOTENV_FILE is set, load that; otherwise default to .env
_env_file = os.getenv("DOTENV_FILE")
if _env_file:
    load_dotenv(_env_file)  # set DOTENV_FILE=.env.staging
else:
    load_dotenv()

from .alerts import make_sink  # noqa: E402
from .classify import classify  # noqa: E402
from .config import ConfigError, Settings, get_settings, validate_settings  # noqa: E402
from .dedupe import collapse_near_duplicates  # noqa: E402
from .eligibility import Eligibility, ExchangeLookup, StaticProfileLookup  # noqa: E402
from .enrichment import EnrichmentGateway  # noqa: E402
from .ledger import Ledger  # noqa: E402
from .llm_async import AsyncLLMClient, LLMClientConfig  # noqa: E402
from .logging_utils import get_logger, setup_logging  # noqa: E402
from .normalizer import normalize_rows  # noqa: E402
from .orchestrator import BatchResult, run_with_concurrency  # noqa: E402
from .pipeline import ItemProcessor  # noqa: E402
from .score import score  # noqa: E402

log = get_logger("runner")

STOP = False


def _sig_handler(signum, frame):
    """Graceful shutdown handler for SIGINT/SIGTERM signals."""
    global STOP
    sig_name = signal.Signals(signum).name
    print(
        f"\n[SHUTDOWN] Received {sig_name}, initiating graceful shutdown...",
        file=sys.stderr,
    )
    STOP = True
    log.warning("shutdown_signal_received signal=%s", sig_name)


class ItemSource(Protocol):
    name: str

    def fetch(self) -> Iterable[Mapping[str, Any]]:
        ...


class JsonlItemSource:
    """Provider rows read from a JSON-lines file, one object per line."""

    def __init__(self, path, name: str = "file"):
        self.path = Path(path)
        self.name = name

    def fetch(self) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        if not self.path.exists():
            log.warning("item_source_missing path=%s", self.path)
            return rows
        with self.path.open("r", encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    row = json.loads(line)
                except ValueError:
                    log.warning("item_source_bad_line path=%s line=%d", self.path, lineno)
                    continue
                if isinstance(row, dict):
                    rows.append(row)
        return rows


async def _caps_for(symbols: Iterable[str], eligibility: Eligibility) -> Dict[str, float]:
    caps: Dict[str, float] = {}
    for sym in symbols:
        cap = await asyncio.to_thread(eligibility.market_cap, sym)
        if cap is not None:
            caps[sym] = cap
    return caps


async def run_cycle(
    source: ItemSource,
    processor: ItemProcessor,
    settings: Optional[Settings] = None,
) -> BatchResult:
    """One polling cycle: ingest, classify, score, gate, then fan out."""
    s = settings or get_settings()
    started = time.monotonic()

    rows = await asyncio.to_thread(source.fetch)
    items = list(normalize_rows(rows, source.name))
    symbols = list(dict.fromkeys(it.symbol for it in items if it.symbol))
    caps = await _caps_for(symbols, processor.eligibility)

    scored = score(classify(items, caps))
    passed = [ci for ci in scored if ci.score >= s.alert_threshold]
    if s.feature_near_dup_collapse and len(passed) > 1:
        passed = collapse_near_duplicates(passed, s.near_dup_threshold)
    log.info(
        "cycle_gate fetched=%d items=%d passed=%d threshold=%.2f",
        len(rows),
        len(items),
        len(passed),
        s.alert_threshold,
    )

    result = await run_with_concurrency(passed, processor.process, s.concurrency)
    log.info("cycle_end took_ms=%d", int((time.monotonic() - started) * 1000))
    return result


async def run(
    source: ItemSource,
    settings: Optional[Settings] = None,
    lookup: Optional[ExchangeLookup] = None,
    *,
    loop: bool = False,
    sleep_s: Optional[float] = None,
    sink=None,
) -> int:
    """Run one cycle, or cycles back to back until STOP when ``loop`` is set."""
    s = settings or get_settings()
    sleep_interval = float(sleep_s if sleep_s is not None else s.poll_news_seconds)
    sink = sink or make_sink(s)
    eligibility = Eligibility(s, lookup)

    try:
        with Ledger(s.db_path, s.ledger_cache_size) as ledger:
            if s.feature_enrichment:
                async with AsyncLLMClient(LLMClientConfig.from_settings(s)) as client:
                    gateway = EnrichmentGateway(client, s)
                    processor = ItemProcessor(ledger, eligibility, gateway, sink, s)
                    await _cycles(source, processor, s, loop, sleep_interval)
            else:
                gateway = EnrichmentGateway(None, s)
                processor = ItemProcessor(ledger, eligibility, gateway, sink, s)
                await _cycles(source, processor, s, loop, sleep_interval)
    finally:
        sink.close()
    return 0


async def _cycles(
    source: ItemSource,
    processor: ItemProcessor,
    settings: Settings,
    loop: bool,
    sleep_interval: float,
) -> None:
    while True:
        try:
            await run_cycle(source, processor, settings)
        except Exception as e:
            # The schedule survives a bad cycle; the next one starts fresh.
            log.error("cycle_failed err=%s", str(e), exc_info=True)

        if not loop or STOP:
            break
        # sleep between cycles, but wake early if STOP flips
        end = time.monotonic() + sleep_interval
        while time.monotonic() < end:
            if STOP:
                break
            await asyncio.sleep(0.2)


def runner_main(
    input_path: str,
    *,
    loop: bool = False,
    sleep_s: Optional[float] = None,
    profiles_path: Optional[str] = None,
) -> int:
    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        validate_settings(settings)
    except ConfigError as e:
        log.error("config_invalid err=%s", str(e))
        print(f"configuration error: {e}", file=sys.stderr)
        return 2

    lookup = StaticProfileLookup.from_json(profiles_path) if profiles_path else None
    log.info(
        "boot_start db=%s sink=%s enrichment=%s threshold=%.2f concurrency=%d profiles=%s",
        settings.db_path,
        settings.alert_sink,
        settings.feature_enrichment,
        settings.alert_threshold,
        settings.concurrency,
        len(lookup) if lookup is not None else 0,
    )

    # signals
    try:
        signal.signal(signal.SIGINT, _sig_handler)
        signal.signal(signal.SIGTERM, _sig_handler)
    except ValueError:
        pass  # not on the main thread

    rc = asyncio.run(
        run(JsonlItemSource(input_path), settings, lookup, loop=loop, sleep_s=sleep_s)
    )
    log.info("boot_end")
    return rc


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the NEON·PR runner."""
    ap = argparse.ArgumentParser(prog="neon-pr")
    ap.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    ap.add_argument("--loop", action="store_true", help="Run continuously")
    ap.add_argument(
        "--sleep",
        type=float,
        default=None,
        help="Seconds between cycles when looping (default: POLL_NEWS_SECONDS)",
    )
    ap.add_argument(
        "--input", required=True, help="JSON-lines file of provider rows"
    )
    ap.add_argument(
        "--profiles",
        default=None,
        help="JSON object mapping symbol -> profile (exchange, marketCap, price)",
    )
    args = ap.parse_args(argv)
    return runner_main(
        args.input,
        loop=args.loop and not args.once,
        sleep_s=args.sleep,
        profiles_path=args.profiles,
    )


if __name__ == "__main__":
    sys.exit(main())
