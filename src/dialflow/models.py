"""
Import every ORM model so ``Base.metadata`` knows all tables.
"""

from dialflow.broadcasts.models import Broadcast, BroadcastStatus, IvrMode  # noqa: F401
from dialflow.dnc.models import DncEntry, DncSource  # noqa: F401
from dialflow.leads.models import Lead  # noqa: F401
from dialflow.pacing.models import ConcurrencySettingsRecord, HistoricalStatRecord  # noqa: F401
from dialflow.queue.models import WorkItem, WorkItemStatus  # noqa: F401
from dialflow.readiness.models import (  # noqa: F401
    AlertSeverity,
    PhoneNumber,
    PhoneNumberStatus,
    SystemAlert,
)
from dialflow.shared.database import Base  # noqa: F401
