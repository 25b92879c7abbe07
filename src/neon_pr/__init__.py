"""NEON·PR package.

This package contains the press-release catalyst pipeline: item
normalisation, rule-based event classification, materiality scoring,
the idempotency ledger, the bounded-concurrency orchestrator, the
enrichment gateway around the remote reasoning service, and alert
delivery. Each module is designed to be testable on its own.
"""

__all__: list[str] = []
