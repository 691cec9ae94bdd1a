"""
Message Parts - Internal multi-part message representation.

A message is a dict ``{"id", "role", "parts", "content"?, "metadata"?}`` where
``parts`` is an ordered list of typed dicts:

    {"type": "text", "text": "..."}
    {"type": "image", "image": "/uploads/... | https://... | data:...", "mimeType": "image/png"}
    {"type": "file", "attachmentId": "...", "text"?: "..."}
    {"type": "reasoning", "text": "..."}
    {"type": "tool-<name>", "toolName", "toolCallId", "state", "input", "output"}

Legacy rows carry only flattened ``content`` and are normalized to a single
text part on read.
"""

from typing import Any, Dict, Iterable, List, Optional

ROLES = ("user", "assistant", "system")
IMAGE_PART_TYPES = ("image",)
ATTACHMENT_PART_TYPES = ("file", "image")


def text_part(text: str) -> Dict[str, Any]:
    return {"type": "text", "text": text}


def normalize_parts(parts: Optional[Iterable[Any]], content: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return a non-empty list of part dicts.

    Non-empty ``parts`` win; otherwise the flattened ``content`` becomes a single
    text part, and a message with neither becomes a single empty text part.
    """
    cleaned = [dict(p) for p in (parts or []) if isinstance(p, dict) and p.get("type")]
    if cleaned:
        return cleaned
    return [text_part(content if isinstance(content, str) else "")]


def normalize_message(message: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize an incoming or stored message to the parts representation."""
    normalized = {
        "role": message.get("role", "user"),
        "parts": normalize_parts(message.get("parts"), message.get("content")),
    }
    if message.get("id"):
        normalized["id"] = message["id"]
    if message.get("metadata"):
        normalized["metadata"] = message["metadata"]
    return normalized


def extract_text(message: Dict[str, Any]) -> str:
    """Concatenate the text parts of a message (or its legacy flat content)."""
    parts = message.get("parts")
    if isinstance(parts, list) and parts:
        return "".join(
            p["text"] for p in parts
            if isinstance(p, dict) and p.get("type") == "text" and isinstance(p.get("text"), str)
        )
    content = message.get("content")
    return content if isinstance(content, str) else ""


def context_text(message: Dict[str, Any]) -> str:
    """All text the model will see for a message, including inlined file content."""
    chunks = []
    for part in message.get("parts") or []:
        if part.get("type") in ("text", "file") and isinstance(part.get("text"), str):
            chunks.append(part["text"])
    return "".join(chunks)


def image_ref(part: Dict[str, Any]) -> Optional[str]:
    """Reference held by an image part (``image`` or legacy ``url`` key)."""
    ref = part.get("image") or part.get("url")
    return ref if isinstance(ref, str) else None


def has_images(message: Dict[str, Any]) -> bool:
    return any(p.get("type") in IMAGE_PART_TYPES for p in message.get("parts") or [])


def attachment_ids(parts: Iterable[Dict[str, Any]]) -> List[str]:
    """Attachment ids referenced by file/image parts, in order, without repeats."""
    seen = []
    for part in parts:
        if part.get("type") in ATTACHMENT_PART_TYPES and part.get("attachmentId"):
            attachment_id = str(part["attachmentId"])
            if attachment_id not in seen:
                seen.append(attachment_id)
    return seen


def is_tool_part(part: Dict[str, Any]) -> bool:
    part_type = part.get("type") or ""
    return part_type.startswith("tool-") or part_type == "dynamic-tool"


def extract_tool_calls(parts: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Tool-call metadata for every tool part of an assistant message."""
    calls = []
    for part in parts:
        if not is_tool_part(part):
            continue
        part_type = part.get("type", "")
        calls.append({
            "type": part_type,
            "toolName": part.get("toolName") or part_type.replace("tool-", "", 1),
            "state": part.get("state", "output-available"),
            "output": part.get("output"),
            "input": part.get("input"),
            "toolCallId": part.get("toolCallId"),
        })
    return calls


def has_tool_content(message: Dict[str, Any], tool_name: Optional[str] = None) -> bool:
    """Whether a message carries a tool part (optionally for a specific tool)."""
    for part in message.get("parts") or []:
        if not is_tool_part(part):
            continue
        if tool_name is None:
            return True
        name = part.get("toolName") or part.get("type", "").replace("tool-", "", 1)
        if name == tool_name:
            return True
    return False


def last_user_message(messages: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    for message in reversed(messages):
        if message.get("role") == "user":
            return message
    return None


def tool_part_text(part: Dict[str, Any]) -> str:
    """Render a completed tool part as text the model can read back later."""
    if part.get("state") != "output-available":
        return ""
    output = part.get("output")
    name = part.get("toolName") or part.get("type", "").replace("tool-", "", 1)
    if not isinstance(output, dict):
        return f"\n\n[{name} result]: {output}" if output else ""
    if output.get("success") is False:
        return ""

    query = (part.get("input") or {}).get("query", "")
    lines = [f"\n\n[{name} results for \"{query}\"]:" if query else f"\n\n[{name} results]:"]
    if output.get("summary"):
        lines.append(str(output["summary"]))
    for result in output.get("results") or []:
        lines.append(f"- {result.get('title', '')} ({result.get('url', '')}): {result.get('content', '')}")
    return "\n".join(lines)
