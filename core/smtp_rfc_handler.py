# SMTP reply classification based on RFC 5321 & RFC 3463
# Turns per-recipient SMTP failures into short, stable failure reasons

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class FailureCategory(Enum):
    """Delivery failure classes derived from the SMTP reply code"""
    TEMPORARY = "temporary"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


# Reply codes worth a specific description (RFC 5321 Section 4.2.3)
SMTP_REPLY_DESCRIPTIONS: Dict[int, str] = {
    421: 'Service not available, closing transmission channel',
    450: 'Mailbox unavailable',
    451: 'Local error in processing',
    452: 'Insufficient system storage',
    454: 'Temporary authentication failure',
    500: 'Syntax error, command unrecognized',
    501: 'Syntax error in parameters or arguments',
    503: 'Bad sequence of commands',
    530: 'Authentication required',
    535: 'Authentication credentials invalid',
    550: 'Mailbox unavailable',
    551: 'User not local',
    552: 'Exceeded storage allocation',
    553: 'Mailbox name not allowed',
    554: 'Transaction failed',
}

_ENHANCED_STATUS = re.compile(r'\b([245])\.(\d{1,3})\.(\d{1,3})\b')


@dataclass
class SMTPFailure:
    """Classified SMTP failure for one recipient"""
    category: FailureCategory
    code: Optional[int]
    message: str
    enhanced_status: Optional[str] = None

    @property
    def reason(self) -> str:
        """One-line reason recorded in broadcast results"""
        parts = [self.category.value]
        if self.code is not None:
            parts.append(str(self.code))
        if self.enhanced_status:
            parts.append(f"({self.enhanced_status})")
        description = self.message or SMTP_REPLY_DESCRIPTIONS.get(self.code or 0, '')
        head = ' '.join(parts)
        return f"{head}: {description}" if description else head


def categorize_code(code: Optional[int]) -> FailureCategory:
    if code is None:
        return FailureCategory.UNKNOWN
    if 400 <= code < 500:
        return FailureCategory.TEMPORARY
    if 500 <= code < 600:
        return FailureCategory.PERMANENT
    return FailureCategory.UNKNOWN


def classify_failure(code: Optional[int], message: str = '') -> SMTPFailure:
    """
    Classify an SMTP reply. A 5.x.x enhanced status code overrides a 4xx reply
    code and vice versa (RFC 3463 takes precedence over the basic code).
    """
    message = (message or '').strip()
    enhanced = _ENHANCED_STATUS.search(message)
    category = categorize_code(code)
    if enhanced:
        category = {
            '4': FailureCategory.TEMPORARY,
            '5': FailureCategory.PERMANENT,
        }.get(enhanced.group(1), category)

    return SMTPFailure(
        category=category,
        code=code,
        message=message,
        enhanced_status=enhanced.group(0) if enhanced else None,
    )
