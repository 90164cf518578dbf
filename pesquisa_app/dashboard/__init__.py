from .fetcher import AssignmentFetcher, RawAssignment  # noqa: F401
from .invalidator import AssignmentWatcher, WatcherRegistry  # noqa: F401
from .reconciler import reconcile  # noqa: F401
