"""Services orchestrating the store, the lifecycle table and the audit sink."""

from restodir.services.discovery import DiscoveryEngine, SearchHit, SearchPage
from restodir.services.lifecycle import LifecycleService
from restodir.services.store import EstablishmentStore

__all__ = [
    "DiscoveryEngine",
    "EstablishmentStore",
    "LifecycleService",
    "SearchHit",
    "SearchPage",
]
