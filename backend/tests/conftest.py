"""
Shared pytest fixtures and in-memory fakes for the chat orchestration tests.

FakeChatStore mirrors ChatStore's coroutine API over dicts, FakeStorage the
storage contract, and FakeLLMClient the two model-call entry points with
scripted answers and call counters.
"""

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from config import runtime_config
from errors import StorageError
from services.chat_store import Attachment, Conversation, ExtractionStatus, Message, new_id

_BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FakeChatStore:
    """In-memory ChatStore. Timestamps strictly increase per write."""

    def __init__(self):
        self.conversations: Dict[str, Conversation] = {}
        self.messages: List[Message] = []
        self.attachments: Dict[str, Attachment] = {}
        self.fail_assistant_adds = 0
        self._tick = itertools.count(1)

    def _now(self) -> datetime:
        return _BASE_TIME + timedelta(milliseconds=next(self._tick))

    # --- Conversations ---

    async def create_conversation(self, user_id, title=None, system_prompt=None, operational_mode=None):
        now = self._now()
        conversation = Conversation(
            id=new_id(),
            user_id=user_id,
            title=title,
            system_prompt=system_prompt,
            operational_mode=operational_mode,
            created_at=now,
            updated_at=now,
        )
        self.conversations[conversation.id] = conversation
        return conversation

    async def get_conversation(self, conversation_id):
        return self.conversations.get(conversation_id)

    async def list_conversations(self, user_id):
        owned = [c for c in self.conversations.values() if c.user_id == user_id]
        owned.sort(key=lambda c: c.updated_at, reverse=True)
        result = []
        for conversation in owned:
            messages = [m for m in self.messages if m.conversation_id == conversation.id]
            result.append({
                "conversation": conversation,
                "last_message": messages[-1].content if messages else None,
            })
        return result

    async def update_conversation(self, conversation_id, **fields):
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return None
        for key, value in fields.items():
            if key in ("title", "system_prompt", "operational_mode"):
                setattr(conversation, key, value)
        conversation.updated_at = self._now()
        return conversation

    async def touch_conversation(self, conversation_id):
        if conversation_id in self.conversations:
            self.conversations[conversation_id].updated_at = self._now()

    async def delete_conversation(self, conversation_id):
        self.conversations.pop(conversation_id, None)
        self.messages = [m for m in self.messages if m.conversation_id != conversation_id]
        self.attachments = {k: a for k, a in self.attachments.items() if a.conversation_id != conversation_id}

    # --- Messages ---

    async def list_messages(self, conversation_id):
        return [m for m in self.messages if m.conversation_id == conversation_id]

    async def latest_user_messages(self, conversation_id, limit=1):
        users = [m for m in self.messages if m.conversation_id == conversation_id and m.role == "user"]
        return list(reversed(users))[:limit]

    async def add_message(self, conversation_id, role, parts, content, metadata=None):
        if role == "assistant" and self.fail_assistant_adds > 0:
            self.fail_assistant_adds -= 1
            raise ConnectionError("database connection lost")
        message = Message(
            id=new_id(),
            conversation_id=conversation_id,
            role=role,
            parts=[dict(p) for p in parts],
            content=content,
            metadata=metadata,
            created_at=self._now(),
        )
        self.messages.append(message)
        return message

    def add(self, conversation_id, role, parts=None, content="", metadata=None) -> Message:
        """Synchronous seeding helper for tests."""
        message = Message(
            id=new_id(),
            conversation_id=conversation_id,
            role=role,
            parts=parts or [],
            content=content,
            metadata=metadata,
            created_at=self._now(),
        )
        self.messages.append(message)
        return message

    # --- Attachments ---

    async def create_attachment(self, attachment):
        attachment.created_at = self._now()
        self.attachments[attachment.id] = attachment
        return attachment

    async def get_attachment(self, attachment_id):
        return self.attachments.get(attachment_id)

    async def list_attachments(self, conversation_id):
        return [a for a in self.attachments.values() if a.conversation_id == conversation_id]

    async def update_attachment(self, attachment_id, **fields):
        attachment = self.attachments.get(attachment_id)
        if attachment is None:
            return None
        for key, value in fields.items():
            setattr(attachment, key, value)
        return attachment

    async def link_attachments(self, message_id, attachment_ids):
        for attachment_id in attachment_ids:
            if attachment_id in self.attachments:
                self.attachments[attachment_id].message_id = message_id

    async def delete_attachment(self, attachment_id):
        self.attachments.pop(attachment_id, None)


class FakeStorage:
    """Dict-backed storage using local-style /uploads/ locators."""

    name = "fake"

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.reads = 0

    async def put(self, data, key, mime_type="application/octet-stream"):
        locator = f"/uploads/{key}"
        self.objects[locator] = data
        return locator

    async def get(self, locator):
        self.reads += 1
        if locator not in self.objects:
            raise StorageError("Failed to read file", operation="read", locator=locator)
        return self.objects[locator]

    async def delete(self, locator):
        self.deleted.append(locator)
        self.objects.pop(locator, None)

    async def close(self):
        pass


class FakeLLMClient:
    """Scripted model collaborator.

    generate_completion answers by prompt kind (classification, intent,
    title); stream_completion yields ``chunks`` as text events.
    """

    def __init__(self, chunks=None, classification="SIMPLE", intent="NO", title="Test Title"):
        self.chunks = list(chunks) if chunks is not None else ["Hello", " there"]
        self.classification = classification
        self.intent = intent
        self.title = title
        self.usage: Optional[Dict[str, Any]] = {"totalTokens": 42}
        self.tool_calls: List[Dict[str, Any]] = []
        self.stream_error: Optional[Exception] = None
        self.hang_after_chunks = False
        self.completion_calls: List[Dict[str, Any]] = []
        self.stream_calls: List[Dict[str, Any]] = []

    def calls_of(self, kind: str) -> List[Dict[str, Any]]:
        return [c for c in self.completion_calls if c["kind"] == kind]

    async def generate_completion(self, messages, model, temperature=0.7, max_tokens=2000):
        system = messages[0]["content"] if messages and messages[0]["role"] == "system" else ""
        if "complexity classifier" in system:
            kind, answer = "classify", self.classification
        elif "intent analyzer" in system:
            kind, answer = "intent", self.intent
        else:
            kind, answer = "title", self.title
        self.completion_calls.append({"kind": kind, "messages": messages, "model": model})
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def stream_completion(
        self,
        messages,
        model,
        temperature=0.7,
        max_tokens=2000,
        tools=None,
        tool_executor=None,
        max_steps=5,
    ):
        self.stream_calls.append({
            "messages": messages,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "tools": tools,
        })
        for call in self.tool_calls if tools and tool_executor else []:
            output = await tool_executor(call["name"], call["args"])
            yield {
                "type": "tool",
                "part": {
                    "type": f"tool-{call['name']}",
                    "toolName": call["name"],
                    "toolCallId": call.get("id", "call_0"),
                    "state": "output-available",
                    "input": call["args"],
                    "output": output,
                },
            }
        for chunk in self.chunks:
            yield {"type": "text", "content": chunk}
        if self.stream_error is not None:
            raise self.stream_error
        if self.hang_after_chunks:
            await asyncio.Event().wait()
        yield {"type": "finish", "usage": self.usage}


@pytest.fixture(autouse=True)
def reset_runtime_config():
    """Keep tests off the network and isolate config changes."""
    runtime_config.update(web_search_enabled=False)
    yield
    runtime_config.reset_to_defaults()


@pytest.fixture
def store():
    return FakeChatStore()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def llm():
    return FakeLLMClient()


def make_attachment(conversation_id, file_name="doc.pdf", mime_type="application/pdf", **fields) -> Attachment:
    key = f"conversations/{conversation_id}/{file_name}"
    data = {
        "id": new_id(),
        "conversation_id": conversation_id,
        "file_name": file_name,
        "mime_type": mime_type,
        "size": 10,
        "storage_key": key,
        "url": f"/uploads/{key}",
        "extraction_status": ExtractionStatus.PENDING,
    }
    data.update(fields)
    return Attachment(**data)
