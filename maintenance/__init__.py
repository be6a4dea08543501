"""Background maintenance of the job store."""
from .recovery import RecoveryReport, recover_orphaned_jobs
from .retention import RetentionSweeper
from .watchdog import Watchdog, WatchdogReport

__all__ = [
    "RecoveryReport",
    "recover_orphaned_jobs",
    "RetentionSweeper",
    "Watchdog",
    "WatchdogReport",
]
