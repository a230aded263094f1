"""
Error message helpers.

Messages from MediaConvert and botocore can be long (full request ids, nested
validation output). They are cut to a fixed size before being stored in
video_pool.metadata or written to the log.
"""

from typing import Optional

from config import ERROR_DETAIL_MAX_LENGTH, ERROR_LOG_MAX_LENGTH

ELLIPSIS = "..."


def truncate_string(text: Optional[str], max_length: int) -> Optional[str]:
    """Cut ``text`` to ``max_length`` characters, ending in '...' when shortened."""
    if text is None:
        return None
    if len(text) <= max_length:
        return text
    if max_length <= len(ELLIPSIS):
        return text[:max_length]
    return text[: max_length - len(ELLIPSIS)] + ELLIPSIS


def truncate_error(error, max_length: int = ERROR_DETAIL_MAX_LENGTH) -> str:
    """
    String form of an error (exception or message) no longer than ``max_length``.

    Exceptions with an empty message fall back to their class name.
    """
    if isinstance(error, BaseException):
        text = str(error) or type(error).__name__
    else:
        text = "" if error is None else str(error)
    return truncate_string(text, max_length)


def error_for_log(error) -> str:
    return truncate_error(error, ERROR_LOG_MAX_LENGTH)
