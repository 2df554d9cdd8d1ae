from .ledger import DuplicateLedger, StubEntry
from .reconciler import DuplicateInfo, DuplicateReconciler, LedgerSink
