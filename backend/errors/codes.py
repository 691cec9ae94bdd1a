"""
Error codes for the Relay application.

Provides a standardized taxonomy of error codes organized by category.
Use these codes consistently across all error responses.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes for Relay.

    Categories:
    - VALIDATION_*: Input validation errors (400)
    - NOT_FOUND_*: Resource not found errors (404)
    - FORBIDDEN_*: Ownership errors (403)
    - PARSE_*: Attachment extraction errors (pipeline-internal)
    - LLM_*: Language model errors (500)
    - EXTERNAL_*: External service errors (500)
    - STORAGE_*: Storage backend and persistence errors (500)
    - INTERNAL_*: Internal/unexpected errors (500)
    """

    # Validation errors (input checking)
    VALIDATION_MISSING_PARAM = "VALIDATION_MISSING_PARAM"
    VALIDATION_INVALID_TYPE = "VALIDATION_INVALID_TYPE"
    VALIDATION_OUT_OF_RANGE = "VALIDATION_OUT_OF_RANGE"
    VALIDATION_INVALID_FORMAT = "VALIDATION_INVALID_FORMAT"
    VALIDATION_EMPTY_TURN = "VALIDATION_EMPTY_TURN"
    VALIDATION_UNSUPPORTED_MIME = "VALIDATION_UNSUPPORTED_MIME"
    VALIDATION_FILE_TOO_LARGE = "VALIDATION_FILE_TOO_LARGE"

    # Not found errors (missing resources)
    NOT_FOUND_CONVERSATION = "NOT_FOUND_CONVERSATION"
    NOT_FOUND_ATTACHMENT = "NOT_FOUND_ATTACHMENT"
    NOT_FOUND_MESSAGE = "NOT_FOUND_MESSAGE"
    NOT_FOUND_RESOURCE = "NOT_FOUND_RESOURCE"

    # Ownership errors
    FORBIDDEN_NOT_OWNER = "FORBIDDEN_NOT_OWNER"

    # Parse errors (attachment extraction)
    PARSE_PDF_FAILED = "PARSE_PDF_FAILED"
    PARSE_WORD_FAILED = "PARSE_WORD_FAILED"
    PARSE_IMAGE_FAILED = "PARSE_IMAGE_FAILED"
    PARSE_FORMAT_UNKNOWN = "PARSE_FORMAT_UNKNOWN"

    # LLM errors (model interactions)
    LLM_UNAVAILABLE = "LLM_UNAVAILABLE"
    LLM_TIMEOUT = "LLM_TIMEOUT"
    LLM_RESPONSE_INVALID = "LLM_RESPONSE_INVALID"
    LLM_STREAM_FAILED = "LLM_STREAM_FAILED"

    # External service errors
    EXTERNAL_SEARXNG_FAILED = "EXTERNAL_SEARXNG_FAILED"
    EXTERNAL_NETWORK_ERROR = "EXTERNAL_NETWORK_ERROR"

    # Storage / persistence errors
    STORAGE_WRITE_FAILED = "STORAGE_WRITE_FAILED"
    STORAGE_READ_FAILED = "STORAGE_READ_FAILED"
    STORAGE_PERSIST_FAILED = "STORAGE_PERSIST_FAILED"

    # Internal errors (unexpected failures)
    INTERNAL_UNEXPECTED = "INTERNAL_UNEXPECTED"
    INTERNAL_CONFIG_ERROR = "INTERNAL_CONFIG_ERROR"
    INTERNAL_STATE_ERROR = "INTERNAL_STATE_ERROR"
