"""
Lab Pool - Engine Package

Infrastructure shared by the pool, the CLI, and the API server. Nothing
here knows about pool items or the claim lifecycle.

  - engine.config:   layered YAML configuration (base → overlay → LP_* env)
  - engine.logging:  JSON log formatting under the `labpool` namespace
  - engine.db:       shared SQLite connection (WAL, busy timeout, dict rows, transactions)
  - engine.retry:    transport-fault retry with circuit breaker
  - engine.audit:    hash-chained transition audit trail
  - engine.webhooks: fire-and-forget HTTP notifications
"""
