"""
Operational mode configuration.

Two concrete modes route a turn to different model settings:
- fast: small model, short answers
- thinking: large model, thorough step-by-step answers

``auto`` is only ever a *requested* mode; it is resolved to one of the
concrete modes by the AutoClassifier.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from config import runtime_config

logger = logging.getLogger(__name__)

FAST = "fast"
THINKING = "thinking"
AUTO = "auto"

OPERATIONAL_MODES = (FAST, THINKING, AUTO)
EFFECTIVE_MODES = (FAST, THINKING)


FAST_MODE_PROMPT = """You are operating in FAST MODE.

CRITICAL INSTRUCTIONS:
- Be extremely concise and direct
- Maximum 1-3 sentences per response
- Prioritize speed over depth
- Get straight to the point
- No elaborate explanations unless explicitly requested

Your goal is to provide quick, accurate answers with minimal verbosity."""

THINKING_MODE_PROMPT = """You are operating in THINKING MODE.

CRITICAL INSTRUCTIONS:
- Provide thorough, comprehensive responses
- Show your reasoning step-by-step
- Explain nuances and edge cases
- Be detailed and complete
- Prioritize accuracy and depth over brevity

Your goal is to demonstrate deep understanding and provide complete, well-reasoned answers."""


@dataclass(frozen=True)
class ModeConfig:
    """Generation settings for one effective mode."""

    model: str
    max_tokens: int
    temperature: float
    system_prompt: str


def get_mode_config(mode: str) -> ModeConfig:
    """Settings for an effective mode, read from the live runtime config.

    Args:
        mode: "fast" or "thinking"

    Returns:
        ModeConfig for that mode
    """
    if mode == THINKING:
        return ModeConfig(
            model=runtime_config.thinking_model,
            max_tokens=runtime_config.thinking_max_tokens,
            temperature=runtime_config.thinking_temperature,
            system_prompt=THINKING_MODE_PROMPT,
        )
    return ModeConfig(
        model=runtime_config.fast_model,
        max_tokens=runtime_config.fast_max_tokens,
        temperature=runtime_config.fast_temperature,
        system_prompt=FAST_MODE_PROMPT,
    )


def is_valid_mode(value: Optional[str]) -> bool:
    return value in OPERATIONAL_MODES


def compose_system_prompt(mode_prompt: str, user_prompt: Optional[str] = None) -> str:
    """Combine mode instructions with the conversation's own system prompt.

    Mode instructions come first and win on conflicting style guidance.
    """
    if not user_prompt or not user_prompt.strip():
        return mode_prompt

    return (
        f"{mode_prompt}\n\n"
        "---\n"
        "ADDITIONAL CONTEXT (User-Defined Domain Expertise):\n"
        f"{user_prompt}\n\n"
        "---\n"
        "IMPORTANT: The operational mode instructions above take precedence over any conflicting "
        "behavioral guidance in the additional context. If there's a conflict between response "
        "style/verbosity, follow the mode instructions."
    )
