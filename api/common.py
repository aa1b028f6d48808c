# api/common.py
"""Request helpers shared by the JSON blueprints."""

from typing import Any, Dict, Iterable

from flask import request

from core.errors import ValidationError


def json_body() -> Dict[str, Any]:
    """Request JSON object; a missing body reads as empty"""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError({'body': 'Expected a JSON object'})
    return data


def pick(data: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    """Copy the camelCase keys in mapping that are present, renamed to snake_case"""
    return {target: data[source] for source, target in mapping.items() if source in data}


def require_fields(data: Dict[str, Any], names: Iterable[str]) -> None:
    missing = {name: f"{name} is required" for name in names if not data.get(name)}
    if missing:
        raise ValidationError(missing)
