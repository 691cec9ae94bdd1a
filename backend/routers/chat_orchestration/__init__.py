"""
Relay Chat Orchestration - the request orchestration core

Components:
- modes: ModeResolver, AutoClassifier and the shared ClassificationCache
- ContextAssembler: history + attachment text → provider-ready messages
- restore_images: re-attaches image data dropped by the provider conversion
- ConversationOrchestrator: one chat turn, from request to persisted answer
- intent: web search intent analysis and title generation

Turn flow:
    ownership → dedupe/persist user message → load_history
      → ModeResolver.resolve → finalize (image window, inline images,
        convert, restore) → stream → persist assistant message
"""

from .context import ContextAssembler
from .image_restore import restore_images, has_image_content
from .intent import analyze_query_intent, generate_title
from .modes import ClassificationCache, AutoClassifier, ModeResolver, ModeDecision
from .orchestrator import ConversationOrchestrator, TurnPlan

__all__ = [
    "ContextAssembler",
    "restore_images",
    "has_image_content",
    "analyze_query_intent",
    "generate_title",
    "ClassificationCache",
    "AutoClassifier",
    "ModeResolver",
    "ModeDecision",
    "ConversationOrchestrator",
    "TurnPlan",
]
