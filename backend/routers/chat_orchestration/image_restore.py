"""
Image restoration across the provider message conversion.

The flat provider format produced by ``to_provider_messages`` keeps only
text, so image data is lost on the way out. ``restore_images`` puts it back
by pairing user messages of the pre-conversion list with user messages of
the converted list position by position. Other roles are ignored entirely,
since the converter is free to add, drop or reorder them.
"""

import logging
from typing import Any, Dict, List

from utils.parts import has_images, image_ref

logger = logging.getLogger(__name__)


def multimodal_content(message: Dict[str, Any]) -> List[Dict[str, Any]]:
    """OpenAI-style content list for a message carrying images.

    Text and inlined file text keep their position relative to the images.
    """
    content: List[Dict[str, Any]] = []
    for part in message.get("parts") or []:
        part_type = part.get("type")
        if part_type in ("text", "file"):
            text = part.get("text")
            if isinstance(text, str) and text:
                content.append({"type": "text", "text": text})
        elif part_type == "image":
            ref = image_ref(part)
            if ref:
                content.append({"type": "image_url", "image_url": {"url": ref}})
    return content


def restore_images(
    original: List[Dict[str, Any]],
    converted: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """Re-attach image data dropped by the provider conversion.

    Args:
        original: Messages in the internal parts representation (pre-conversion)
        converted: Provider messages returned by the converter

    Returns:
        A new provider message list; user entries whose source carried
        images get a multimodal content list, everything else is unchanged.
    """
    sources = [m for m in original if m.get("role") == "user"]
    slots = [i for i, m in enumerate(converted) if m.get("role") == "user"]

    restored = [dict(m) for m in converted]
    if len(sources) != len(slots):
        # Positions no longer identify sources; pairing anyway would move images between turns
        logger.warning(
            f"User message count changed in conversion ({len(sources)} -> {len(slots)}), "
            "images not restored"
        )
        return restored

    restored_count = 0
    for source, index in zip(sources, slots):
        if not has_images(source):
            continue
        content = multimodal_content(source)
        if not any(c["type"] == "image_url" for c in content):
            continue
        restored[index]["content"] = content
        restored_count += 1

    if restored_count:
        logger.debug(f"Restored images on {restored_count} user messages")
    return restored


def has_image_content(messages: List[Dict[str, Any]]) -> bool:
    """Whether any provider message still carries image data."""
    for message in messages:
        content = message.get("content")
        if isinstance(content, list) and any(c.get("type") == "image_url" for c in content):
            return True
    return False
