# toolrelay/core/errors.py
from __future__ import annotations

import logging

import httpx

log = logging.getLogger("app.errors")

MSG_INVALID_CREDENTIALS = "The model service rejected the API key. Check the configured credentials and try again."
MSG_RATE_LIMITED = "The model service is rate limiting requests. Please wait a moment and try again."
MSG_QUOTA = "The model service account has run out of quota. Check the billing settings of the provider."
MSG_MODEL_NOT_FOUND = "The requested model was not found or is not available for this API key."
MSG_CONTEXT_LENGTH = "The conversation is too long for the selected model. Start a new conversation or shorten the input."
MSG_BAD_REQUEST = "The model service rejected the request. Check the selected model and try again."
MSG_UNAVAILABLE = "The model service is temporarily unavailable. Please try again later."
MSG_TIMEOUT = "The model service did not respond in time. Please try again."
MSG_UNREACHABLE = "Could not reach the model service. Check the network connection and the configured base URL."
MSG_INTERNAL = "An unexpected error occurred while generating the response."


def _response_text(exc: httpx.HTTPStatusError) -> str:
    try:
        return (exc.response.text or "").lower()
    except httpx.ResponseNotRead:
        return ""


def describe_upstream_error(exc: BaseException) -> str:
    """Turn a failure raised inside a round into a message safe to show to the user.

    The provider payload is logged for operators and never returned.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = _response_text(exc)
        log.warning({"event": "upstream_http_error", "status": status, "body": body[:500]})
        if status in (401, 403):
            return MSG_INVALID_CREDENTIALS
        if status == 429:
            return MSG_QUOTA if "quota" in body else MSG_RATE_LIMITED
        if status == 404:
            return MSG_MODEL_NOT_FOUND
        if status == 400:
            if "context_length" in body or "context length" in body:
                return MSG_CONTEXT_LENGTH
            return MSG_BAD_REQUEST
        if status >= 500:
            return MSG_UNAVAILABLE
        return MSG_BAD_REQUEST
    if isinstance(exc, httpx.TimeoutException):
        log.warning({"event": "upstream_timeout", "error": str(exc)})
        return MSG_TIMEOUT
    if isinstance(exc, httpx.RequestError):
        log.warning({"event": "upstream_unreachable", "error": str(exc)})
        return MSG_UNREACHABLE
    log.error({"event": "engine_failure", "error_type": type(exc).__name__, "error": str(exc)})
    return MSG_INTERNAL
