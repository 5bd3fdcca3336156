"""
Shared trading core: venue/feed/repository interfaces, data models and
position math used by the ledger, the execution orchestrator and the
reconciliation service.
"""
