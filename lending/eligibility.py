"""
eligibility.py - Reputation-based admission scores

ReputationRegistry is the EligibilityGate used by the gated pool variant. It
stores one score per principal and only its owner may change them. Pools that
admit everyone simply run without a gate (policy.gate is None).
"""

from __future__ import annotations
import logging
from typing import Dict

from .core import Unauthorized

logger = logging.getLogger(__name__)


class ReputationRegistry:
    """
    Owner-administered score store implementing the EligibilityGate protocol.

    Example:
        registry = ReputationRegistry(owner="admin")
        registry.set_score("admin", "alice", 42)
        registry.score("alice")  # 42
        registry.score("bob")    # 0
    """

    def __init__(self, owner: str):
        if not owner or not owner.strip():
            raise ValueError("Registry owner cannot be empty")
        self._owner = owner
        self._scores: Dict[str, int] = {}

    @property
    def owner(self) -> str:
        return self._owner

    def score(self, principal: str) -> int:
        """Return the principal's score; unknown principals score 0."""
        return self._scores.get(principal, 0)

    def set_score(self, acting_as: str, principal: str, score: int) -> None:
        """
        Set a principal's score.

        Raises:
            Unauthorized: If acting_as is not the registry owner
            ValueError: If score is not a non-negative int
        """
        self._require_owner(acting_as)
        if isinstance(score, bool) or not isinstance(score, int) or score < 0:
            raise ValueError(f"Score must be a non-negative int, got {score!r}")
        self._scores[principal] = score
        logger.info("Score for %s set to %d by %s", principal, score, acting_as)

    def transfer_ownership(self, acting_as: str, new_owner: str) -> None:
        """Hand the registry to a new owner. Only the current owner may do this."""
        self._require_owner(acting_as)
        if not new_owner or not new_owner.strip():
            raise ValueError("New owner cannot be empty")
        self._owner = new_owner
        logger.info("Registry ownership transferred from %s to %s", acting_as, new_owner)

    def _require_owner(self, acting_as: str) -> None:
        if acting_as != self._owner:
            raise Unauthorized(f"{acting_as} is not the registry owner")
