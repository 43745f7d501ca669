"""Allow running the worker with ``python -m contract_registry.worker``."""

from contract_registry.worker.main import run

run()
