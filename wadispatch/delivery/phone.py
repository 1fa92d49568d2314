from __future__ import annotations

import re
from collections.abc import Sequence

_NON_DIGITS = re.compile(r"\D")


def normalize_phone_number(
    raw: str | None,
    default_country_code: str = "57",
    local_prefixes: Sequence[str] = ("3",),
) -> str:
    """Reduce ``raw`` to the digits-only form the API expects.

    A 10-digit national mobile number (one starting with a prefix in
    ``local_prefixes``) gets ``default_country_code`` prepended; anything
    else is returned as bare digits.

    Examples
    --------
    >>> normalize_phone_number("300 123 4567")
    '573001234567'
    >>> normalize_phone_number("+57 300-123-4567")
    '573001234567'
    >>> normalize_phone_number("")
    ''
    """
    if not raw:
        return ""

    digits = _NON_DIGITS.sub("", raw)
    if len(digits) == 10 and digits.startswith(tuple(local_prefixes)):
        return f"{default_country_code}{digits}"
    return digits
