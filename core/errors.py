# core/errors.py
"""
Error taxonomy shared by the database adapter, the subscription flow and the
broadcast dispatcher. Engine-native exceptions are translated into these
before they leave the core.
"""

from typing import Dict, Optional


class NewsletterError(Exception):
    """Base exception for newsletter platform operations"""
    pass


class ValidationError(NewsletterError):
    """Malformed or missing field, length or format violation"""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        summary = '; '.join(f"{field}: {message}" for field, message in self.errors.items())
        super().__init__(summary or 'Validation failed')


class NotFoundError(NewsletterError):
    """Requested entity does not exist (or is not visible to the caller)"""
    pass


class ConflictError(NewsletterError):
    """Unique key already taken, e.g. an email that is already subscribed"""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class NoRecipientsError(NewsletterError):
    """Broadcast requested while nobody is actively subscribed"""
    pass


class TransportError(NewsletterError):
    """Mail delivery failed for a single recipient"""

    def __init__(self, message: str, smtp_code: Optional[int] = None):
        self.smtp_code = smtp_code
        super().__init__(message)


class ConfigurationError(NewsletterError):
    """Store or mail transport cannot be reached or is not configured"""
    pass


class StorageError(NewsletterError):
    """Unexpected persistence engine failure"""
    pass
