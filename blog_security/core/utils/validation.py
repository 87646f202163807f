"""
Argument validation and normalization helpers.
"""

import re
from typing import Any, Optional

from ..exceptions import ValidationError


_UNSAFE_ENDPOINT_CHARS = re.compile(r'[^a-zA-Z0-9/_-]')


def require_identifier(value: Any, field: str) -> str:
    """
    Validate a required identifier argument.

    Args:
        value: Value supplied by the caller
        field: Argument name used in the error

    Returns:
        The value as a stripped string

    Raises:
        ValidationError: If the value is None or blank
    """
    if value is None:
        raise ValidationError(f"{field} is required", field=field)

    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} must not be blank", field=field)

    return text


def normalize_endpoint(endpoint: Optional[str]) -> str:
    """
    Normalize a request path for use in store keys and policy lookup.

    Drops the query string and replaces any character outside
    ``[a-zA-Z0-9/_-]`` with an underscore.

    Args:
        endpoint: Raw request path, possibly with a query string

    Returns:
        Normalized endpoint, or 'unknown' when none was given
    """
    if not endpoint:
        return 'unknown'

    query_index = endpoint.find('?')
    if query_index > 0:
        endpoint = endpoint[:query_index]

    return _UNSAFE_ENDPOINT_CHARS.sub('_', endpoint)
