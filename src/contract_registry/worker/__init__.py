"""Registry worker service.

PostgreSQL-backed background runner for the daily registry jobs:
- scheduled transitions (expiring soon / expired) with digest notifications
- automatic renewals

Usage:
    python -m contract_registry.worker
"""

from contract_registry.worker.main import Worker, WorkerConfig, run

__all__ = ["Worker", "WorkerConfig", "run"]
