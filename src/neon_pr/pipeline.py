"""Per-item worker run under the concurrent orchestrator.

Order matters: the ledger claim happens after the cheap filters and
before enrichment, so a rejected item is never recorded and a recorded
item is never enriched or alerted twice.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from .alerts import AlertPayload, AlertSink
from .config import Settings, get_settings
from .eligibility import Eligibility
from .enrichment import EnrichmentGateway
from .ledger import Ledger
from .logging_utils import get_logger
from .models import ClassifiedItem
from .orchestrator import WorkerOutcome

log = get_logger("pipeline")


class ItemProcessor:
    def __init__(
        self,
        ledger: Ledger,
        eligibility: Eligibility,
        gateway: EnrichmentGateway,
        sink: AlertSink,
        settings: Optional[Settings] = None,
    ):
        self.ledger = ledger
        self.eligibility = eligibility
        self.gateway = gateway
        self.sink = sink
        self.settings = settings or get_settings()

    async def process(self, ci: ClassifiedItem, idx: int = 0) -> WorkerOutcome:
        item = ci.item
        symbol = ci.symbol
        if not symbol:
            log.warning("item_skipped reason=no_symbol title=%s", item.title[:140])
            return WorkerOutcome.SKIPPED

        reason = await asyncio.to_thread(
            self.eligibility.reject_reason, symbol, ci.market_cap
        )
        if reason:
            log.info(
                "item_skipped reason=%s symbol=%s title=%s",
                reason,
                symbol,
                item.title[:120],
            )
            return WorkerOutcome.SKIPPED

        h, inserted = await asyncio.to_thread(
            self.ledger.claim, item, ci.klass.value, ci.score
        )
        if not inserted:
            log.info("item_skipped reason=dedupe symbol=%s hash=%s", symbol, h[:12])
            return WorkerOutcome.SKIPPED

        price = await asyncio.to_thread(self.eligibility.price, symbol)
        result = await self.gateway.enrich(ci, price)

        payload = AlertPayload.from_result(ci, result)
        ok = await self.sink.send(payload)
        log.info(
            "item_processed idx=%d symbol=%s class=%s score=%.3f decision=%s "
            "alert_ok=%s enrich_err=%s",
            idx,
            symbol,
            ci.klass.value,
            ci.score,
            result.decision.value,
            ok,
            result.error,
        )
        return WorkerOutcome.DONE
