"""
Relay Services - Shared infrastructure services.

- database: asyncpg pool manager with schema bootstrap
- chat_store: conversations, messages and attachments
- storage: local / remote object storage backends
- extraction: PDF, Word, thumbnail and OCR collaborators
- attachment_pipeline: background extraction worker pool
- attachments: upload / lookup / delete of attachments
- conversations: owner-scoped conversation operations
- llm_client: OpenAI-compatible model client
"""

from .database import DatabaseManager, get_database

__all__ = ["DatabaseManager", "get_database"]
