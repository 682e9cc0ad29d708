"""
Verification code extraction.

Patterns are tried in order and the first match wins. Bare digit runs are
checked before the contextual phrases, so "482913 is your code" returns the
6-digit run via the first pattern rather than via "is your".
"""

from __future__ import annotations

import re
from typing import Optional

CODE_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"\b(\d{6})\b"),                   # 6 digits
    re.compile(r"\b(\d{4})\b"),                   # 4 digits
    re.compile(r"\b(\d{8})\b"),                   # 8 digits
    re.compile(r"code[:\s]+(\d{4,8})", re.I),     # "code: 123456"
    re.compile(r"(\d{4,8})\s+is your", re.I),     # "123456 is your"
    re.compile(r"verify[:\s]+(\d{4,8})", re.I),   # "verify: 123456"
)


def extract_code(text: Optional[str]) -> Optional[str]:
    """
    Extract a 2FA / verification code from SMS text.

    Args:
        text: Message body

    Returns:
        The first captured code, or None if no pattern matches
    """
    if not text:
        return None

    for pattern in CODE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)

    return None
