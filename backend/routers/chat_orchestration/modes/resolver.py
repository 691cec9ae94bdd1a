"""
Mode Resolver - requested mode → effective mode.

Priority: per-turn override → stored conversation preference → "auto".
Concrete requests pass through untouched; only "auto" consults the classifier.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .classifier import AutoClassifier
from .mode_config import AUTO, EFFECTIVE_MODES, is_valid_mode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModeDecision:
    """Requested vs effective mode for one turn (recorded in message metadata)."""

    requested: str
    effective: str

    def to_dict(self) -> Dict[str, str]:
        return {"requested": self.requested, "effective": self.effective}


class ModeResolver:
    def __init__(self, classifier: AutoClassifier):
        self.classifier = classifier

    def requested_mode(self, override: Optional[str] = None, stored: Optional[str] = None) -> str:
        """Pick the requested mode from the override/preference hierarchy."""
        if override:
            if is_valid_mode(override):
                return override
            logger.warning(f'Invalid mode override received: "{override}". Defaulting to auto mode.')
            return AUTO
        if stored:
            if is_valid_mode(stored):
                return stored
            logger.warning(f'Invalid stored mode preference: "{stored}". Defaulting to auto mode.')
        return AUTO

    async def resolve(
        self,
        history: List[Dict[str, Any]],
        override: Optional[str] = None,
        stored: Optional[str] = None,
    ) -> ModeDecision:
        """Resolve the mode for a turn.

        Args:
            history: Conversation messages (parts representation)
            override: Per-turn mode sent with the request
            stored: Conversation-level mode preference

        Returns:
            ModeDecision with requested and effective modes
        """
        requested = self.requested_mode(override, stored)
        if requested in EFFECTIVE_MODES:
            return ModeDecision(requested=requested, effective=requested)

        effective = await self.classifier.classify(history)
        logger.info(f"Auto mode resolved to: {effective.upper()}")
        return ModeDecision(requested=requested, effective=effective)
