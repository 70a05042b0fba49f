"""
Provenance ledger: shadow ledger, signal corpus and epochs.

Usage:
    from tracegraph.ledger import EpochService, ShadowLedger, SignalCorpus

    ledger = ShadowLedger(settings.ledger_root)
    corpus = SignalCorpus(settings.ledger_root)
    epochs = EpochService(ledger, corpus, settings)
"""

from .entry import LedgerEntry, LedgerKind, LedgerOperation, Provenance
from .epoch import Epoch, EpochCounts, EpochService, EpochStatus
from .shadow_ledger import ShadowLedger
from .signals import SemanticSignal, SignalCorpus, SignalType

__all__ = [
    "LedgerEntry",
    "LedgerKind",
    "LedgerOperation",
    "Provenance",
    "Epoch",
    "EpochCounts",
    "EpochService",
    "EpochStatus",
    "ShadowLedger",
    "SemanticSignal",
    "SignalCorpus",
    "SignalType",
]
