"""Registry service layer.

- lifecycle: state machine, human-driven state changes
- scanner: scheduled transition pass
- renewal: automatic renewal of expiring records
- record_store: persistence seam of the engine
- protocol: protocol number generation
- recipients: notification rules and recipient resolution
- notifier: digest notifications
- email: SMTP delivery
- job_queue: PostgreSQL-backed job queue
"""

from contract_registry.services.job_queue import (
    JobNotFoundError,
    JobQueueError,
    JobQueueService,
    JobType,
)
from contract_registry.services.lifecycle import (
    STATE_LABELS,
    InvalidTransitionError,
    RecordLifecycleService,
    RecordNotFoundError,
    RecordView,
    StateChangeResult,
    next_state,
    validate_transition,
)
from contract_registry.services.notifier import (
    CATEGORY_CODES,
    DigestOutcome,
    Notifier,
    TransitionCategory,
)
from contract_registry.services.record_store import RecordStore, RecordStoreError, SqlRecordStore
from contract_registry.services.renewal import RenewalProcessor
from contract_registry.services.scanner import ScheduledTransitionScanner

__all__ = [
    "CATEGORY_CODES",
    "STATE_LABELS",
    "DigestOutcome",
    "InvalidTransitionError",
    "JobNotFoundError",
    "JobQueueError",
    "JobQueueService",
    "JobType",
    "Notifier",
    "RecordLifecycleService",
    "RecordNotFoundError",
    "RecordStore",
    "RecordStoreError",
    "RecordView",
    "RenewalProcessor",
    "ScheduledTransitionScanner",
    "SqlRecordStore",
    "StateChangeResult",
    "TransitionCategory",
    "next_state",
    "validate_transition",
]
