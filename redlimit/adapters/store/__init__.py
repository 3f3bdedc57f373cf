"""Counter store adapters - abstracts over the shared counter backend."""

from redlimit.adapters.store.base import AbstractCounterStore, AdmitOutcome
from redlimit.adapters.store.factory import create_counter_store
from redlimit.adapters.store.in_memory import InMemoryCounterStore
from redlimit.adapters.store.redis_store import RedisCounterStore

__all__ = [
    "AbstractCounterStore",
    "AdmitOutcome",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "create_counter_store",
]
