"""Helpers for reading JSON request bodies."""
from flask import request

from now24.exceptions import BusinessLogicError

_MISSING = object()


def json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def int_field(payload: dict, key: str, default=_MISSING):
    """Read an integer field, raising a 400 when it is missing or not numeric."""
    value = payload.get(key)
    if value is None or value == '':
        if default is _MISSING:
            raise BusinessLogicError(f"Campo obrigatório: {key}", payload={'field': key})
        return default
    if isinstance(value, bool):
        raise BusinessLogicError(f"Campo inválido: {key}", payload={'field': key})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BusinessLogicError(f"Campo inválido: {key}", payload={'field': key})


def str_field(payload: dict, key: str, default=_MISSING):
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if default is _MISSING:
            raise BusinessLogicError(f"Campo obrigatório: {key}", payload={'field': key})
        return default
    return str(value).strip()
