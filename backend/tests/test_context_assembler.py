"""
Tests for ContextAssembler: attachment enrichment, document truncation,
context budget warning, image window and local image resolution.
"""

import asyncio
import base64
import logging

import pytest

from conftest import make_attachment
from errors import NotFoundError
from routers.chat_orchestration import ContextAssembler
from routers.chat_orchestration.context import OMITTED_IMAGE_TEXT
from services.chat_store import ExtractionStatus

TINY_PNG = "data:image/png;base64,iVBORw0KGgo="


def _conversation(store, **fields):
    return asyncio.run(store.create_conversation("user-1", **fields))


def _user_contents(messages):
    return [m["content"] for m in messages if m["role"] == "user"]


def _has_image(content):
    return isinstance(content, list) and any(c["type"] == "image_url" for c in content)


class TestHistory:
    def test_system_prompt_prepended(self, store, storage):
        conversation = _conversation(store, system_prompt="Be kind.")
        store.add(conversation.id, "user", [{"type": "text", "text": "hello"}], "hello")

        messages = asyncio.run(ContextAssembler(store, storage).assemble(conversation.id))

        assert messages[0] == {"role": "system", "content": "Be kind."}
        assert messages[1] == {"role": "user", "content": "hello"}

    def test_empty_conversation(self, store, storage):
        bare = _conversation(store)
        prompted = _conversation(store, system_prompt="Sys")
        assembler = ContextAssembler(store, storage)

        assert asyncio.run(assembler.assemble(bare.id)) == []
        assert asyncio.run(assembler.assemble(prompted.id)) == [{"role": "system", "content": "Sys"}]

    def test_legacy_rows_normalized(self, store, storage):
        conversation = _conversation(store)
        store.add(conversation.id, "user", [], "legacy question")
        store.add(conversation.id, "assistant", [], "legacy answer")

        history = asyncio.run(ContextAssembler(store, storage).load_history(conversation))

        assert [m["parts"] for m in history] == [
            [{"type": "text", "text": "legacy question"}],
            [{"type": "text", "text": "legacy answer"}],
        ]

    def test_missing_conversation(self, store, storage):
        with pytest.raises(NotFoundError):
            asyncio.run(ContextAssembler(store, storage).assemble("nope"))


class TestAttachmentEnrichment:
    def _history_for(self, store, storage, attachment, **assembler_kwargs):
        conversation = asyncio.run(store.get_conversation(attachment.conversation_id))
        asyncio.run(store.create_attachment(attachment))
        store.add(
            conversation.id,
            "user",
            [{"type": "text", "text": "summarize"}, {"type": "file", "attachmentId": attachment.id}],
            "summarize",
        )
        assembler = ContextAssembler(store, storage, **assembler_kwargs)
        return asyncio.run(assembler.load_history(conversation))

    def test_success_inlines_text(self, store, storage):
        conversation = _conversation(store)
        attachment = make_attachment(
            conversation.id,
            file_name="notes.pdf",
            extraction_status=ExtractionStatus.SUCCESS,
            extracted_text="The quarterly numbers.",
        )
        history = self._history_for(store, storage, attachment)

        file_part = history[-1]["parts"][1]
        assert file_part["text"] == "\n\n[File Content: notes.pdf]:\nThe quarterly numbers."

    def test_long_document_truncated_to_budget(self, store, storage):
        conversation = _conversation(store)
        attachment = make_attachment(
            conversation.id,
            file_name="big.pdf",
            extraction_status=ExtractionStatus.SUCCESS,
            extracted_text="x" * 40_000,
        )
        history = self._history_for(store, storage, attachment, max_document_tokens=5_000, chars_per_token=4)

        text = history[-1]["parts"][1]["text"]
        body = text.split("]:\n", 1)[1]
        marker = "... [Text Truncated at 5000 tokens.]"
        assert body.endswith(marker)
        assert body[: -len(marker)] == "x" * 20_000

    def test_processing_gets_placeholder(self, store, storage):
        conversation = _conversation(store)
        attachment = make_attachment(
            conversation.id, file_name="slow.pdf", extraction_status=ExtractionStatus.PROCESSING
        )
        history = self._history_for(store, storage, attachment)

        text = history[-1]["parts"][1]["text"]
        assert 'reading the file "slow.pdf"' in text

    @pytest.mark.parametrize("status", [ExtractionStatus.PENDING, ExtractionStatus.FAILED])
    def test_pending_and_failed_untouched(self, store, storage, status):
        conversation = _conversation(store)
        attachment = make_attachment(conversation.id, extraction_status=status)
        history = self._history_for(store, storage, attachment)

        assert history[-1]["parts"][1] == {"type": "file", "attachmentId": attachment.id}

    def test_unknown_attachment_untouched(self, store, storage):
        conversation = _conversation(store)
        store.add(conversation.id, "user", [{"type": "file", "attachmentId": "ghost", "text": "kept"}], "")

        history = asyncio.run(ContextAssembler(store, storage).load_history(conversation))

        assert history[-1]["parts"] == [{"type": "file", "attachmentId": "ghost", "text": "kept"}]

    def test_budget_warning_is_advisory(self, store, storage, caplog):
        conversation = _conversation(store)
        store.add(conversation.id, "user", [{"type": "text", "text": "y" * 5_000}], "")
        assembler = ContextAssembler(store, storage, max_total_context_tokens=100, chars_per_token=4)

        with caplog.at_level(logging.WARNING):
            history = asyncio.run(assembler.load_history(conversation))

        assert "exceeds safe limit" in caplog.text
        assert history[-1]["parts"][0]["text"] == "y" * 5_000


class TestImageWindow:
    def test_six_images_window_three(self, store, storage):
        conversation = _conversation(store)
        for i in range(6):
            store.add(
                conversation.id,
                "user",
                [{"type": "text", "text": f"picture {i}"}, {"type": "image", "image": TINY_PNG, "mimeType": "image/png"}],
                f"picture {i}",
            )
            store.add(conversation.id, "assistant", [{"type": "text", "text": f"seen {i}"}], f"seen {i}")

        messages = asyncio.run(ContextAssembler(store, storage, image_window=3).assemble(conversation.id))
        contents = _user_contents(messages)

        assert len(contents) == 6
        for content in contents[:3]:
            assert isinstance(content, str)
            assert OMITTED_IMAGE_TEXT in content
        for i, content in enumerate(contents[3:], start=3):
            assert _has_image(content)
            assert {"type": "text", "text": f"picture {i}"} in content

    def test_window_counts_every_user_message(self, store, storage):
        conversation = _conversation(store)
        store.add(conversation.id, "user", [{"type": "text", "text": "a"}, {"type": "image", "image": TINY_PNG}], "")
        for text in ("b", "c", "d"):
            store.add(conversation.id, "user", [{"type": "text", "text": text}], text)

        messages = asyncio.run(ContextAssembler(store, storage, image_window=3).assemble(conversation.id))
        contents = _user_contents(messages)

        assert not _has_image(contents[0])
        assert OMITTED_IMAGE_TEXT in contents[0]
        assert contents[1:] == ["b", "c", "d"]

    def test_image_inside_window_kept_behind_text_turns(self, store, storage):
        conversation = _conversation(store)
        store.add(conversation.id, "user", [{"type": "text", "text": "a"}, {"type": "image", "image": TINY_PNG}], "")
        for text in ("b", "c"):
            store.add(conversation.id, "user", [{"type": "text", "text": text}], text)

        messages = asyncio.run(ContextAssembler(store, storage, image_window=3).assemble(conversation.id))

        assert _has_image(_user_contents(messages)[0])

    def test_order_preserved(self, store, storage):
        conversation = _conversation(store)
        for i in range(4):
            store.add(conversation.id, "user", [{"type": "text", "text": str(i)}, {"type": "image", "image": TINY_PNG}], "")

        assembler = ContextAssembler(store, storage, image_window=2)
        history = asyncio.run(assembler.load_history(conversation))
        windowed = assembler.apply_image_window(history)

        assert [m["parts"][0]["text"] for m in windowed] == ["0", "1", "2", "3"]


class TestImageResolution:
    def test_local_reference_inlined(self, store, storage):
        conversation = _conversation(store)
        storage.objects["/uploads/conversations/c/photo.png"] = b"\x89PNG"
        store.add(
            conversation.id,
            "user",
            [{"type": "text", "text": "what is this"}, {"type": "image", "image": "/uploads/conversations/c/photo.png", "mimeType": "image/png"}],
            "what is this",
        )

        messages = asyncio.run(ContextAssembler(store, storage).assemble(conversation.id))
        content = _user_contents(messages)[0]

        expected = "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()
        assert content == [
            {"type": "text", "text": "what is this"},
            {"type": "image_url", "image_url": {"url": expected}},
        ]

    def test_absolute_urls_not_read(self, store, storage):
        conversation = _conversation(store)
        store.add(conversation.id, "user", [{"type": "image", "image": "https://cdn.example.com/a.png"}], "")

        messages = asyncio.run(ContextAssembler(store, storage).assemble(conversation.id))

        assert storage.reads == 0
        assert _user_contents(messages)[0] == [{"type": "image_url", "image_url": {"url": "https://cdn.example.com/a.png"}}]

    def test_failed_read_degrades_part(self, store, storage):
        conversation = _conversation(store)
        storage.objects["/uploads/good.png"] = b"ok"
        store.add(conversation.id, "user", [{"type": "image", "image": "/uploads/missing.png"}], "")
        store.add(conversation.id, "user", [{"type": "image", "image": "/uploads/good.png"}], "")

        messages = asyncio.run(ContextAssembler(store, storage).assemble(conversation.id))
        first, second = _user_contents(messages)

        assert first == [{"type": "image_url", "image_url": {"url": "/uploads/missing.png"}}]
        assert second[0]["image_url"]["url"].startswith("data:image/jpeg;base64,")


class TestFinalize:
    def test_system_prompt_replaced(self, store, storage):
        conversation = _conversation(store, system_prompt="user prompt")
        store.add(conversation.id, "user", [{"type": "text", "text": "hi"}], "hi")
        assembler = ContextAssembler(store, storage)

        history = asyncio.run(assembler.load_history(conversation))
        messages = asyncio.run(assembler.finalize(history, "composed prompt"))

        assert [m for m in messages if m["role"] == "system"] == [{"role": "system", "content": "composed prompt"}]

    def test_history_not_mutated(self, store, storage):
        conversation = _conversation(store)
        store.add(conversation.id, "user", [{"type": "image", "image": "/uploads/x.png"}], "")
        storage.objects["/uploads/x.png"] = b"img"
        assembler = ContextAssembler(store, storage, image_window=0)

        history = asyncio.run(assembler.load_history(conversation))
        asyncio.run(assembler.finalize(history))

        assert history[-1]["parts"] == [{"type": "image", "image": "/uploads/x.png"}]

    def test_file_only_turn_keeps_images_on_their_own_message(self, store, storage):
        conversation = _conversation(store)
        attachment = make_attachment(conversation.id, extraction_status=ExtractionStatus.PENDING)
        asyncio.run(store.create_attachment(attachment))
        store.add(conversation.id, "user", [{"type": "text", "text": "FIRST"}], "FIRST")
        store.add(conversation.id, "assistant", [{"type": "text", "text": "ok"}], "ok")
        store.add(conversation.id, "user", [{"type": "text", "text": "SECOND"}, {"type": "image", "image": TINY_PNG}], "SECOND")
        store.add(conversation.id, "assistant", [{"type": "text", "text": "nice"}], "nice")
        store.add(conversation.id, "user", [{"type": "file", "attachmentId": attachment.id}], "")

        messages = asyncio.run(ContextAssembler(store, storage).assemble(conversation.id))
        contents = _user_contents(messages)

        assert contents[0] == "FIRST"
        assert contents[1] == [
            {"type": "text", "text": "SECOND"},
            {"type": "image_url", "image_url": {"url": TINY_PNG}},
        ]
        assert contents[2] == ""
