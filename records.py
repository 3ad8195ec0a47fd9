"""Helpers for turning caller-supplied dicts into stored column values.

The ``*_values`` helpers raise ``InvalidRecord``; the adapters turn it into
an ``invalid`` domain error before anything is written.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation

import config
from results import InvalidRecord


def now():
    return datetime.now()


def to_decimal(value):
    if value is None or value == "":
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise InvalidRecord(config.MSG_INVALID_VALUE.format(value)) from None
    if not number.is_finite():
        raise InvalidRecord(config.MSG_INVALID_VALUE.format(value))
    return number


def pick(data, fields):
    """Keep only the writable ``fields`` present in ``data``."""
    return {k: data[k] for k in fields if k in data}


def require(values, fields, creating=True):
    """Reject missing or blank ``fields``.

    On update only the fields being written are checked.
    """
    for name in fields:
        if not creating and name not in values:
            continue
        value = values.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise InvalidRecord(config.MSG_REQUIRED_FIELD.format(name))


def record_values(data, fields, required=(), creating=True):
    values = pick(data, fields)
    require(values, required, creating)
    return values


def asset_values(data, creating=True):
    values = record_values(data, config.ASSET_FIELDS, config.ASSET_REQUIRED, creating)
    if 'value' in values:
        values['value'] = to_decimal(values['value'])
    if 'status' in values:
        if not values['status']:
            values['status'] = config.STATUS_ACTIVE
        elif values['status'] not in config.ASSET_STATUSES:
            raise InvalidRecord(config.MSG_INVALID_STATUS.format(values['status']))
    elif creating:
        values['status'] = config.STATUS_ACTIVE
    return values


def is_unique_violation(error, constraint, columns):
    """True when ``error`` was raised by the given unique constraint.

    PostgreSQL names the constraint in its message; SQLite lists the
    ``table.column`` pairs instead.
    """
    message = str(getattr(error, 'orig', error))
    return constraint in message or f"UNIQUE constraint failed: {columns}" in message
