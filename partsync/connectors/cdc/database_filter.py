"""
Database-level include/ignore filtering for change events.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatabaseFilter:
    """
    Allow/deny lists of database names.

    A database is processed iff (allow is empty or it is in allow) and it is
    not in deny. The same rule is compiled into a change stream ``$match``
    stage so excluded events never leave the source cluster.
    """
    allow: FrozenSet[str] = field(default_factory=frozenset)
    deny: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_lists(
        cls,
        include: Optional[Iterable[str]] = None,
        ignore: Optional[Iterable[str]] = None
    ) -> "DatabaseFilter":
        return cls(allow=frozenset(include or ()), deny=frozenset(ignore or ()))

    def includes(self, database: str) -> bool:
        if self.allow and database not in self.allow:
            return False
        return database not in self.deny

    def compile(self) -> List[Dict[str, Any]]:
        """
        Build the change stream pipeline for this filter.

        Returns:
            ``[]`` when both lists are empty, otherwise a single ``$match``
            stage on ``ns.db``.
        """
        clauses: List[Dict[str, Any]] = []
        if self.allow:
            clauses.append({"ns.db": {"$in": sorted(self.allow)}})
            logger.debug(f"Include filter for dbs: {sorted(self.allow)}")
        if self.deny:
            clauses.append({"ns.db": {"$nin": sorted(self.deny)}})
            logger.debug(f"Ignore filter for dbs: {sorted(self.deny)}")

        if not clauses:
            return []
        if len(clauses) == 1:
            return [{"$match": clauses[0]}]
        return [{"$match": {"$and": clauses}}]
