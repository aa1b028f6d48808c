# core/captcha.py
"""CAPTCHA verification for the public subscribe form."""

import re
from typing import Optional

_CAPTCHA_ID = re.compile(r'[A-Za-z0-9]{8}')


def verify_captcha(captcha_id: Optional[str], captcha_input: Optional[str]) -> bool:
    """
    The image text is the challenge id itself, so a solution is valid when the
    input matches an 8-character alphanumeric id exactly.
    """
    if not captcha_id or not captcha_input:
        return False
    if not isinstance(captcha_id, str) or not _CAPTCHA_ID.fullmatch(captcha_id):
        return False
    return captcha_input == captcha_id
