"""Namespace (target schema) naming."""

import re
from typing import Callable, Optional

from warehouse_loader.core.model import Destination, Source

NAMESPACE_LENGTH_LIMIT = 127

_ALNUM_RUNS = re.compile(r'[A-Za-z0-9]+')
_LOWER_UPPER = re.compile(r'([a-z0-9])([A-Z])')
_UPPER_WORD = re.compile(r'([A-Z]+)([A-Z][a-z])')


def to_snake_case(value: str) -> str:
    value = _UPPER_WORD.sub(r'\1_\2', value)
    value = _LOWER_UPPER.sub(r'\1_\2', value)
    return value.lower()


def to_safe_namespace(name: str) -> str:
    """
    Schema name usable on every warehouse: alphanumeric runs of name joined by
    underscores, snake cased.

    >>> to_safe_namespace('##evrnvrv$vtr&^')
    'evrnvrv_vtr'
    """
    namespace = to_snake_case('_'.join(_ALNUM_RUNS.findall(name or '')))
    if namespace and namespace[0].isdigit():
        namespace = '_' + namespace
    if not namespace:
        namespace = 'stringempty'
    return namespace[:NAMESPACE_LENGTH_LIMIT]


def resolve_namespace(
    source: Source,
    destination: Destination,
    custom_prefix: str = '',
    lookup: Optional[Callable[[Source, Destination], str]] = None,
    to_provider_case: Callable[[str], str] = lambda name: name,
) -> str:
    """
    Pick the namespace of an upload: the destination's configured namespace,
    then the one used by earlier uploads of the same source and destination,
    then one derived from the source name.
    """
    configured = str(destination.config.get('namespace') or '').strip()
    if configured:
        return to_provider_case(to_safe_namespace(configured))

    if lookup is not None:
        previous = lookup(source, destination)
        if previous:
            return previous

    if custom_prefix:
        return to_provider_case(to_safe_namespace(f"{custom_prefix}_{source.name}"))
    return to_provider_case(to_safe_namespace(source.name))
