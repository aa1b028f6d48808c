# core/entities.py
"""
Engine-agnostic entity types and their validation rules.

Both storage backends hand back these dataclasses, so callers only ever see a
single `id` string and the documented fields, never `_id` or ORM state.
"""

from dataclasses import MISSING, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from email_validator import validate_email, EmailNotValidError

from core.errors import ValidationError

TITLE_MAX_LENGTH = 200
EXCERPT_MAX_LENGTH = 200
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 255
SOURCE_MAX_LENGTH = 100
DEFAULT_SOURCE = 'website'


class Role(Enum):
    """User roles"""
    USER = "user"
    ADMIN = "admin"


def _from_record(cls, record: Dict[str, Any]):
    values = {}
    for f in fields(cls):
        if f.name in record:
            values[f.name] = record[f.name]
        elif f.default is not MISSING:
            values[f.name] = f.default
        else:
            values[f.name] = None
    return cls(**values)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class User:
    id: str
    name: str
    email: str
    role: str = Role.USER.value
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    password: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'User':
        return _from_record(cls, record)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    def to_dict(self) -> Dict[str, Any]:
        """Client representation; the password hash is never included"""
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'isActive': self.is_active,
            'createdAt': _isoformat(self.created_at),
            'updatedAt': _isoformat(self.updated_at),
        }


@dataclass
class Newsletter:
    id: str
    title: str
    content: str
    excerpt: str
    published: bool = False
    published_at: Optional[datetime] = None
    slug: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'Newsletter':
        return _from_record(cls, record)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'excerpt': self.excerpt,
            'published': self.published,
            'publishedAt': _isoformat(self.published_at),
            'slug': self.slug,
            'createdAt': _isoformat(self.created_at),
            'updatedAt': _isoformat(self.updated_at),
        }


@dataclass
class Subscription:
    id: str
    email: str
    is_active: bool = True
    subscribed_at: Optional[datetime] = None
    unsubscribed_at: Optional[datetime] = None
    source: str = DEFAULT_SOURCE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'Subscription':
        return _from_record(cls, record)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'email': self.email,
            'isActive': self.is_active,
            'subscribedAt': _isoformat(self.subscribed_at),
            'unsubscribedAt': _isoformat(self.unsubscribed_at),
            'source': self.source,
        }


# Validation

def normalize_email(value: Any, field_name: str = 'email') -> str:
    """
    Validate email format and return it lower-cased

    Raises:
        ValidationError: when the value is missing or not a valid address
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError({field_name: 'Email is required'})
    try:
        result = validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError:
        raise ValidationError({field_name: 'Please enter a valid email'})
    return result.normalized.lower()


def _reject_unknown(data: Dict[str, Any], allowed: Iterable[str]) -> Dict[str, str]:
    allowed = set(allowed)
    return {key: 'Unknown field' for key in data if key not in allowed}


def _required_text(data: Dict[str, Any], key: str, label: str, errors: Dict[str, str],
                   max_length: Optional[int] = None, min_length: int = 1,
                   strip: bool = True) -> Optional[str]:
    value = data.get(key)
    if not isinstance(value, str):
        errors[key] = f"{label} is required"
        return None
    checked = value.strip()
    if len(checked) < min_length:
        errors[key] = f"{label} is required" if not checked else \
            f"{label} must be at least {min_length} characters"
        return None
    if max_length is not None and len(checked) > max_length:
        errors[key] = f"{label} must be at most {max_length} characters"
        return None
    return checked if strip else value


def _boolean(data: Dict[str, Any], key: str, errors: Dict[str, str]) -> Optional[bool]:
    value = data.get(key)
    if not isinstance(value, bool):
        errors[key] = 'Must be true or false'
        return None
    return value


def validate_user(data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate user creation data; the password must already be hashed"""
    errors = _reject_unknown(data, ('name', 'email', 'password', 'role', 'is_active'))
    cleaned: Dict[str, Any] = {}

    cleaned['name'] = _required_text(data, 'name', 'Name', errors,
                                     max_length=NAME_MAX_LENGTH, min_length=NAME_MIN_LENGTH)
    try:
        cleaned['email'] = normalize_email(data.get('email'))
    except ValidationError as e:
        errors.update(e.errors)

    password = data.get('password')
    if not isinstance(password, str) or not (PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH):
        errors['password'] = (f"Password must be between {PASSWORD_MIN_LENGTH} "
                              f"and {PASSWORD_MAX_LENGTH} characters")
    cleaned['password'] = password

    role = data.get('role', Role.USER.value)
    if role not in {r.value for r in Role}:
        errors['role'] = 'Role must be one of: user, admin'
    cleaned['role'] = role

    cleaned['is_active'] = _boolean(data, 'is_active', errors) if 'is_active' in data else True

    if errors:
        raise ValidationError(errors)
    return cleaned


NEWSLETTER_CREATE_FIELDS = ('title', 'content', 'excerpt', 'published', 'published_at')
NEWSLETTER_PATCH_FIELDS = ('title', 'content', 'excerpt', 'published')


def validate_newsletter(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate newsletter data.

    Args:
        data: Incoming fields
        partial: Only validate the keys present (update patches)

    Returns:
        Cleaned field dictionary
    """
    allowed = NEWSLETTER_PATCH_FIELDS if partial else NEWSLETTER_CREATE_FIELDS
    errors = _reject_unknown(data, allowed)
    cleaned: Dict[str, Any] = {}

    if not partial or 'title' in data:
        cleaned['title'] = _required_text(data, 'title', 'Title', errors,
                                          max_length=TITLE_MAX_LENGTH)
    if not partial or 'content' in data:
        # Content keeps its original whitespace; only emptiness is checked
        cleaned['content'] = _required_text(data, 'content', 'Content', errors, strip=False)
    if not partial or 'excerpt' in data:
        cleaned['excerpt'] = _required_text(data, 'excerpt', 'Excerpt', errors,
                                            max_length=EXCERPT_MAX_LENGTH)
    if 'published' in data:
        cleaned['published'] = _boolean(data, 'published', errors)
    elif not partial:
        cleaned['published'] = False

    if 'published_at' in data and data['published_at'] is not None:
        if not isinstance(data['published_at'], datetime):
            errors['published_at'] = 'Must be a datetime'
        else:
            cleaned['published_at'] = data['published_at']

    if errors:
        raise ValidationError(errors)
    return cleaned


SUBSCRIPTION_CREATE_FIELDS = ('email', 'is_active', 'source')
SUBSCRIPTION_PATCH_FIELDS = ('is_active', 'subscribed_at', 'unsubscribed_at', 'source')


def validate_subscription(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Validate subscription creation data or an update patch"""
    allowed = SUBSCRIPTION_PATCH_FIELDS if partial else SUBSCRIPTION_CREATE_FIELDS
    errors = _reject_unknown(data, allowed)
    cleaned: Dict[str, Any] = {}

    if not partial:
        try:
            cleaned['email'] = normalize_email(data.get('email'))
        except ValidationError as e:
            errors.update(e.errors)

    if 'is_active' in data:
        cleaned['is_active'] = _boolean(data, 'is_active', errors)
    elif not partial:
        cleaned['is_active'] = True

    if 'source' in data or not partial:
        source = data.get('source') or DEFAULT_SOURCE
        if not isinstance(source, str) or len(source) > SOURCE_MAX_LENGTH:
            errors['source'] = f"Source must be text of at most {SOURCE_MAX_LENGTH} characters"
        cleaned['source'] = source

    for key in ('subscribed_at', 'unsubscribed_at'):
        if key in data:
            value = data[key]
            if value is not None and not isinstance(value, datetime):
                errors[key] = 'Must be a datetime or null'
            cleaned[key] = value

    if errors:
        raise ValidationError(errors)
    return cleaned
