"""
Query intent analysis and title generation.

Both are single non-streaming calls on the fast model. Neither may break a
turn: intent analysis fails to "no web search", title generation fails to
a fixed fallback title.
"""

import logging
from typing import Any, Dict, List, Optional

from config import runtime_config
from utils.parts import extract_text, has_tool_content, last_user_message

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "New Conversation"
MAX_TITLE_WORDS = 6

TITLE_SYSTEM_PROMPT = (
    "Generate a short, concise title (max 6 words) for a conversation that starts with "
    "the following user message. Return ONLY the title, nothing else."
)


def intent_system_prompt(has_recent_web_search: bool) -> str:
    recent = (
        "\nIMPORTANT: The conversation already has recent web search results. Unless the new query "
        "is asking for completely different real-time information, answer NO.\n"
        if has_recent_web_search
        else ""
    )
    return f"""You are a query intent analyzer. Determine if a user query needs real-time web search.

Answer "YES" if the query:
- Asks for current/recent events, news, or statistics (e.g., "latest AI trends 2025", "today's weather")
- Requests real-time information (e.g., "current stock price", "recent developments")
- Needs up-to-date data that changes frequently

Answer "NO" if the query:
- Can be answered from general knowledge (e.g., "What is JavaScript?", "Explain OOP")
- Is a follow-up question to a previous search (context is already available)
- Asks about your capabilities (e.g., "How can you help me?")
- Is a general conversation or clarification
{recent}
Reply with ONLY "YES" or "NO"."""


def has_recent_web_search(history: List[Dict[str, Any]], depth: Optional[int] = None) -> bool:
    depth = depth if depth is not None else runtime_config.web_search_history_depth
    recent = history[-depth:] if depth > 0 else []
    return any(m.get("role") == "assistant" and has_tool_content(m, "web_search") for m in recent)


async def analyze_query_intent(llm_client, history: List[Dict[str, Any]]) -> bool:
    """Whether the latest user query needs real-time web search."""
    message = last_user_message(history)
    if message is None:
        return False
    query = extract_text(message).strip()
    if not query:
        return False

    messages = [
        {"role": "system", "content": intent_system_prompt(has_recent_web_search(history))},
        {"role": "user", "content": f'Query: "{query}"'},
    ]
    try:
        answer = await llm_client.generate_completion(
            messages,
            model=runtime_config.fast_model,
            temperature=0.0,
            max_tokens=5,
        )
    except Exception as e:
        logger.error(f"Query intent analysis failed: {e}")
        return False

    needs_search = "YES" in answer.strip().upper()
    logger.info(
        f'Query intent analysis: "{query[:50]}..." -> {"NEEDS WEB SEARCH" if needs_search else "GENERAL KNOWLEDGE"}'
    )
    return needs_search


def clean_title(raw: str) -> str:
    """Strip surrounding quotes and whitespace, cap at MAX_TITLE_WORDS words."""
    title = raw.strip().strip("\"'").strip()
    words = title.split()
    if len(words) > MAX_TITLE_WORDS:
        title = " ".join(words[:MAX_TITLE_WORDS])
    return title


async def generate_title(llm_client, first_message: str) -> str:
    """Short title for a conversation from its first user message."""
    if not first_message.strip():
        return FALLBACK_TITLE
    messages = [
        {"role": "system", "content": TITLE_SYSTEM_PROMPT},
        {"role": "user", "content": first_message},
    ]
    try:
        raw = await llm_client.generate_completion(
            messages,
            model=runtime_config.fast_model,
            temperature=0.7,
            max_tokens=30,
        )
    except Exception as e:
        logger.warning(f"Title generation failed: {e}")
        return FALLBACK_TITLE
    return clean_title(raw) or FALLBACK_TITLE
