"""
Caller-facing tool operations.

Each tool takes a JSON-style argument dict and returns a ToolResult with a
human-readable text block. ``SmsTools.call()`` is the error boundary: any
failure inside a tool, including bad arguments and unknown tool names,
comes back as an ``is_error`` result with a short explanation instead of
an exception.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .ingestion import IngestionService, SmsFilter, SmsMessage, extract_code

logger = logging.getLogger(__name__)

MESSAGE_SEPARATOR = "\n\n---\n\n"


@dataclass
class ToolResult:
    """Result of a tool call."""
    text: str
    is_error: bool = False
    data: Optional[dict] = None

    def to_dict(self) -> dict:
        """Convert to the content-block shape returned to callers."""
        result: dict[str, Any] = {
            "content": [{"type": "text", "text": self.text}],
            "isError": self.is_error,
        }
        if self.data is not None:
            result["structuredContent"] = self.data
        return result


TOOL_DEFINITIONS: list[dict] = [
    {
        "name": "get_recent_sms",
        "description": "Get recent SMS messages received via Pushbullet. Messages are stored from the WebSocket stream.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "limit": {
                    "type": "number",
                    "description": "Maximum number of messages to return (default: 10)",
                },
                "sender": {
                    "type": "string",
                    "description": "Filter by sender name (partial match)",
                },
            },
            "required": [],
        },
    },
    {
        "name": "wait_for_sms",
        "description": "Wait for a new SMS message. Useful for receiving 2FA codes. Will wait for up to the specified timeout.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "timeout_seconds": {
                    "type": "number",
                    "description": "How long to wait for SMS (default: 60 seconds)",
                },
                "sender": {
                    "type": "string",
                    "description": "Only match SMS from this sender (partial match)",
                },
                "contains": {
                    "type": "string",
                    "description": "Only match SMS containing this text",
                },
                "has_code": {
                    "type": "boolean",
                    "description": "Only match SMS that appear to contain a verification code",
                },
            },
            "required": [],
        },
    },
    {
        "name": "extract_code_from_sms",
        "description": "Extract a verification code from SMS text. Looks for common 2FA code patterns (4-8 digit numbers).",
        "inputSchema": {
            "type": "object",
            "properties": {
                "text": {
                    "type": "string",
                    "description": "The SMS text to extract a code from",
                },
            },
            "required": ["text"],
        },
    },
    {
        "name": "get_sms_status",
        "description": "Get the status of the Pushbullet SMS connection.",
        "inputSchema": {
            "type": "object",
            "properties": {},
            "required": [],
        },
    },
    {
        "name": "fetch_sms_threads",
        "description": "Fetch SMS threads directly from Pushbullet API. Use this if real-time messages aren't appearing.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "limit": {
                    "type": "number",
                    "description": "Maximum number of threads to fetch (default: 20)",
                },
            },
            "required": [],
        },
    },
]


def _number_arg(args: dict, name: str, default: float) -> float:
    """Read a numeric argument; missing, null and 0 fall back to the default."""
    value = args.get(name)
    if value is None or value == "" or value == 0:
        return default
    if isinstance(value, bool):
        raise ValueError(f"Argument '{name}' must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Argument '{name}' must be a number, got {value!r}")
    if number < 0:
        raise ValueError(f"Argument '{name}' must not be negative")
    return number


def _bool_arg(args: dict, name: str) -> bool:
    value = args.get(name)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"Argument '{name}' must be a boolean, got {value!r}")
    return value


def _str_arg(args: dict, name: str) -> Optional[str]:
    value = args.get(name)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValueError(f"Argument '{name}' must be a string")
    return value


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}"


def format_message(message: SmsMessage) -> str:
    """One message as shown in listings."""
    return f"[{message.timestamp_iso}] From: {message.sender}\n{message.body}"


class SmsTools:
    """
    Tool operations over a running IngestionService.

    Usage:
        tools = SmsTools(service)
        result = await tools.call("wait_for_sms", {"has_code": True})
        print(result.text)
    """

    def __init__(self, service: IngestionService):
        self._service = service
        self._handlers: dict[str, Callable[[dict], Awaitable[ToolResult]]] = {
            "get_recent_sms": self.get_recent_sms,
            "wait_for_sms": self.wait_for_sms,
            "extract_code_from_sms": self.extract_code_from_sms,
            "get_sms_status": self.get_sms_status,
            "fetch_sms_threads": self.fetch_sms_threads,
        }

    @staticmethod
    def list_tools() -> list[dict]:
        """Tool names, descriptions and input schemas."""
        return [dict(tool) for tool in TOOL_DEFINITIONS]

    async def call(self, name: str, arguments: Optional[dict] = None) -> ToolResult:
        """
        Run a tool by name.

        Never raises for tool failures; they come back as error results.
        """
        args = arguments or {}
        try:
            if not isinstance(args, dict):
                raise ValueError("Tool arguments must be an object")

            handler = self._handlers.get(name)
            if handler is None:
                raise ValueError(f"Unknown tool: {name}")

            return await handler(args)

        except Exception as e:
            logger.error(f"Tool '{name}' failed: {e}")
            return ToolResult(text=f"Error: {e}", is_error=True)

    # =========================================================================
    # Tools
    # =========================================================================

    async def get_recent_sms(self, args: dict) -> ToolResult:
        limit = int(_number_arg(args, "limit", 10))
        sender = _str_arg(args, "sender")

        messages = self._service.recent_messages(limit=limit, sender=sender)

        if not messages:
            status = self._service.status()
            from_text = f' from "{sender}"' if sender else ""
            return ToolResult(
                text=(
                    f"No SMS messages found{from_text}. "
                    f"WebSocket connected: {str(status.connected).lower()}. "
                    f"Total stored: {status.stored_count}"
                ),
            )

        formatted = MESSAGE_SEPARATOR.join(format_message(m) for m in messages)
        return ToolResult(
            text=f"Found {len(messages)} SMS message(s):\n\n{formatted}",
        )

    async def wait_for_sms(self, args: dict) -> ToolResult:
        timeout_seconds = _number_arg(args, "timeout_seconds", 60)
        sms_filter = SmsFilter(
            sender=_str_arg(args, "sender"),
            contains=_str_arg(args, "contains"),
            has_code=_bool_arg(args, "has_code"),
        )

        filter_desc = ""
        if not sms_filter.is_empty:
            filter_desc = f" matching: {json.dumps(sms_filter.to_dict(), separators=(',', ':'))}"

        logger.info(
            f"Waiting for SMS{filter_desc} (timeout: {_format_seconds(timeout_seconds)}s)"
        )

        message = await self._service.wait_for(
            None if sms_filter.is_empty else sms_filter,
            timeout_seconds,
        )

        if message is None:
            return ToolResult(
                text=(
                    f"Timeout waiting for SMS{filter_desc}. No matching message "
                    f"received within {_format_seconds(timeout_seconds)} seconds."
                ),
            )

        code = extract_code(message.body)
        code_text = f"\n\nExtracted code: {code}" if code else ""
        return ToolResult(
            text=(
                f"SMS received!\n\nFrom: {message.sender}\n"
                f"Time: {message.timestamp_iso}\nBody: {message.body}{code_text}"
            ),
            data={**message.to_dict(), "code": code},
        )

    async def extract_code_from_sms(self, args: dict) -> ToolResult:
        text = args.get("text")
        if not isinstance(text, str):
            raise ValueError("Argument 'text' is required and must be a string")

        code = extract_code(text)
        if not code:
            return ToolResult(text="No verification code found in the provided text.")
        return ToolResult(text=f"Extracted verification code: {code}", data={"code": code})

    async def get_sms_status(self, args: dict) -> ToolResult:
        status = self._service.status()
        data = status.to_dict()
        return ToolResult(
            text=(
                "Pushbullet SMS Status:\n"
                f"- WebSocket connected: {str(status.connected).lower()}\n"
                f"- Messages stored: {status.stored_count}\n"
                f"- Most recent: {data['mostRecentTimestamp'] or 'None'}\n"
                f"- API token configured: {'Yes' if status.credential_configured else 'No'}"
            ),
            data=data,
        )

    async def fetch_sms_threads(self, args: dict) -> ToolResult:
        limit = int(_number_arg(args, "limit", 20))

        messages = await self._service.fetch_threads(limit=limit)

        if not messages:
            return ToolResult(
                text=(
                    "No SMS threads found. Make sure SMS mirroring is enabled "
                    "in the Pushbullet Android app."
                ),
            )

        formatted = MESSAGE_SEPARATOR.join(format_message(m) for m in messages)
        return ToolResult(
            text=f"Fetched {len(messages)} SMS thread(s):\n\n{formatted}",
        )
