"""Masking of temporary credentials embedded in generated statements."""

import re
from types import MappingProxyType
from typing import Mapping

MASK = '***'

AWS_SECRETS_REGEX: Mapping[str, str] = MappingProxyType({
    r"AWS_KEY_ID='[^']*'": f"AWS_KEY_ID='{MASK}'",
    r"AWS_SECRET_KEY='[^']*'": f"AWS_SECRET_KEY='{MASK}'",
    r"AWS_TOKEN='[^']*'": f"AWS_TOKEN='{MASK}'",
})

DUCKDB_SECRETS_REGEX: Mapping[str, str] = MappingProxyType({
    r"KEY_ID '[^']*'": f"KEY_ID '{MASK}'",
    r"SECRET '[^']*'": f"SECRET '{MASK}'",
    r"SESSION_TOKEN '[^']*'": f"SESSION_TOKEN '{MASK}'",
})


def redact(statement: str, secrets_regex: Mapping[str, str] = AWS_SECRETS_REGEX) -> str:
    """Replace every matching secret with the masked placeholder."""
    if not statement:
        return statement
    for pattern, replacement in secrets_regex.items():
        statement = re.sub(pattern, replacement, statement)
    return statement
