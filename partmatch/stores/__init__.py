"""In-memory collaborator implementations."""
from partmatch.stores.memory import (
    InMemoryCandidateRepository,
    InMemoryCatalog,
    InMemoryJobStore,
    InMemoryRuleStore,
)

__all__ = [
    "InMemoryCandidateRepository",
    "InMemoryCatalog",
    "InMemoryJobStore",
    "InMemoryRuleStore",
]
