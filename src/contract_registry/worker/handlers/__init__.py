"""Job handlers for the registry worker.

- registry: scheduled transition scan and automatic renewals
"""

from contract_registry.worker.handlers.registry import (
    run_automatic_renewals_handler,
    run_scheduled_transitions_handler,
)

__all__ = [
    "run_automatic_renewals_handler",
    "run_scheduled_transitions_handler",
]
