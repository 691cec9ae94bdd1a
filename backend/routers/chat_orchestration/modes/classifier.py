"""
Auto Classifier - decides fast vs thinking for ``auto`` turns.

Order of checks:
1. No user message            → fast
2. Trimmed text < threshold   → fast (no cache lookup, no model call)
3. Cache hit                  → cached decision
4. Small model, SIMPLE/COMPLEX, bounded by a timeout
   - "COMPLEX" anywhere in the answer → thinking, otherwise fast
   - timeout or any failure → fast, nothing cached
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from .cache import ClassificationCache, cache_key
from .mode_config import FAST, THINKING
from utils.parts import extract_text, last_user_message

logger = logging.getLogger(__name__)

CLASSIFIER_SYSTEM_PROMPT = """You are a query complexity classifier. Classify as SIMPLE or COMPLEX.

SIMPLE queries (use Fast mode):
- Short, direct questions (e.g., "What is X?", "Define Y")
- Factual lookups (e.g., "Who invented Z?")
- Basic clarifications (e.g., "Can you explain that?")
- Greetings and small talk
- Yes/no questions
- Simple how-to questions (e.g., "How do I install X?")

COMPLEX queries (use Thinking mode):
- Multi-part questions requiring synthesis
- Code implementation requests (e.g., "Build a function that...")
- Requests for deep explanations (e.g., "Explain the internals of...")
- Comparative analysis (e.g., "Compare X and Y in detail")
- Creative/open-ended tasks (e.g., "Design a system for...")
- Debugging or troubleshooting problems
- Architectural or design decisions
- Requests for step-by-step reasoning
- Questions with "why" or "how does it work internally"

Reply with ONLY "SIMPLE" or "COMPLEX". No explanation needed."""


class AutoClassifier:
    """Classifies a conversation's latest query as fast or thinking.

    Args:
        llm_client: Model-call collaborator exposing ``generate_completion``
        cache: Shared ClassificationCache
        model: Model used for classification (a small/cheap one)
        timeout: Hard limit on the classification call, in seconds
        short_query_threshold: Queries shorter than this skip classification
    """

    def __init__(
        self,
        llm_client,
        cache: ClassificationCache,
        model: str,
        timeout: float = 5.0,
        short_query_threshold: int = 15,
    ):
        self.llm_client = llm_client
        self.cache = cache
        self.model = model
        self.timeout = timeout
        self.short_query_threshold = short_query_threshold

    async def classify(self, history: List[Dict[str, Any]]) -> str:
        """Return "fast" or "thinking". Never raises."""
        message = last_user_message(history)
        if message is None:
            logger.debug("No user message found, defaulting to fast mode")
            return FAST

        query = extract_text(message).strip()
        if len(query) < self.short_query_threshold:
            logger.info(
                f"Auto-classified as FAST (short query: {len(query)} chars, "
                f"threshold: {self.short_query_threshold})"
            )
            return FAST

        key = cache_key(history)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Auto-classified as {cached.upper()} (cached)")
            return cached

        start = time.time()
        answer = await self._ask_model(query)
        if answer is None:
            return FAST

        decision = THINKING if "COMPLEX" in answer.upper() else FAST
        self.cache.set(key, decision)

        preview = query[:60] + ("..." if len(query) > 60 else "")
        logger.info(
            f'Auto-classified: "{preview}" -> {decision.upper()} mode ({(time.time() - start) * 1000:.0f}ms)'
        )
        return decision

    async def _ask_model(self, query: str) -> Optional[str]:
        """One bounded classification call. None on timeout or failure."""
        messages = [
            {"role": "system", "content": CLASSIFIER_SYSTEM_PROMPT},
            {"role": "user", "content": f'Query: "{query}"'},
        ]
        try:
            return await asyncio.wait_for(
                self.llm_client.generate_completion(messages, model=self.model, temperature=0.0, max_tokens=5),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Classification timed out after {self.timeout}s, falling back to FAST mode")
        except Exception as e:
            logger.warning(f"Auto classification failed ({e}), falling back to FAST mode")
        return None
