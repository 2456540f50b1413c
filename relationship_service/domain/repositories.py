"""
Repository interfaces - Define contracts for data access and collaborators
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .models import AccountProfile, Mutation, NotificationKind


@dataclass
class ApplyResult:
    """Outcome of applying a batch of mutations"""
    applied: bool
    # Documents already written before a conflict stopped a sequential apply
    written: List[str] = field(default_factory=list)
    conflict_on: Optional[str] = None


class IDocumentBackend(ABC):
    """Document store backend holding set-valued fields"""

    @abstractmethod
    async def find(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        """Find a document by id"""
        pass

    @abstractmethod
    async def insert(self, collection: str, document: Dict[str, Any]) -> bool:
        """Insert a document, returning False if the id already exists"""
        pass

    @abstractmethod
    async def apply(
        self,
        collection: str,
        mutations: Sequence[Mutation],
        expected_versions: Dict[str, int],
    ) -> ApplyResult:
        """
        Apply mutations, grouped per document, in first-appearance order

        Each touched document listed in expected_versions is only written
        if its stored version still matches; every write increments it.
        """
        pass


class IAccountDirectory(ABC):
    """Read-only account profile lookup"""

    @abstractmethod
    async def get(self, account_id: str) -> Optional[AccountProfile]:
        """Get an account's privacy and display identity"""
        pass


class INotificationDispatcher(ABC):
    """Best-effort relationship event sink"""

    @abstractmethod
    async def emit(
        self,
        kind: NotificationKind,
        from_account_id: str,
        to_account_id: str,
        from_display_name: Optional[str] = None,
    ) -> None:
        """Emit an event; must never raise"""
        pass
