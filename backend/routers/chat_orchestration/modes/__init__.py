"""
Relay Operational Modes

- mode_config: fast/thinking generation settings and system prompt composition
- cache: ClassificationCache (bounded FIFO, TTL, background sweep)
- classifier: AutoClassifier (short-query heuristic → cache → small model)
- resolver: ModeResolver (override → stored preference → auto)
"""

from .mode_config import (
    FAST,
    THINKING,
    AUTO,
    OPERATIONAL_MODES,
    EFFECTIVE_MODES,
    ModeConfig,
    get_mode_config,
    compose_system_prompt,
    is_valid_mode,
)
from .cache import ClassificationCache, cache_key
from .classifier import AutoClassifier
from .resolver import ModeDecision, ModeResolver

__all__ = [
    "FAST",
    "THINKING",
    "AUTO",
    "OPERATIONAL_MODES",
    "EFFECTIVE_MODES",
    "ModeConfig",
    "get_mode_config",
    "compose_system_prompt",
    "is_valid_mode",
    "ClassificationCache",
    "cache_key",
    "AutoClassifier",
    "ModeDecision",
    "ModeResolver",
]
