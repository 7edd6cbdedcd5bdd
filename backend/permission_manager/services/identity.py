"""Validation of user identities before they become a certificate CN or a label value."""

from __future__ import annotations

import re

from permission_manager.exceptions import InvalidIdentityError

# X.509 upper bound for commonName (RFC 5280 ub-common-name)
MAX_IDENTITY_LENGTH = 64

# Characters that are structural in an openssl -subj string or an RFC 4514 DN.
STRUCTURAL_CHARACTERS = frozenset('/\\,=+<>#;"')

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")


def validate_identity(identity: str) -> str:
    """Return ``identity`` unchanged if it can be used verbatim as a Common Name.

    Raises InvalidIdentityError otherwise; the value is never trimmed or escaped.
    """
    if not isinstance(identity, str) or not identity:
        raise InvalidIdentityError("identity must be a non-empty string", identity=identity if isinstance(identity, str) else None)
    if len(identity) > MAX_IDENTITY_LENGTH:
        raise InvalidIdentityError(f"identity must be at most {MAX_IDENTITY_LENGTH} characters", identity=identity)
    if identity != identity.strip():
        raise InvalidIdentityError("identity must not start or end with whitespace", identity=identity)
    if _CONTROL_CHARS.search(identity):
        raise InvalidIdentityError("identity must not contain control characters", identity=identity.encode("unicode_escape").decode())
    bad = sorted(STRUCTURAL_CHARACTERS.intersection(identity))
    if bad:
        raise InvalidIdentityError(f"identity contains reserved characters: {''.join(bad)}", identity=identity)
    return identity


MAX_LABEL_VALUE_LENGTH = 63

_LABEL_VALUE = re.compile(r"^(([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9])?$")


def validate_owner_label(identity: str) -> str:
    """Check that ``identity`` is storable verbatim as a Kubernetes label value.

    The ownership label has to round-trip exactly, so values the API server would
    reject are refused up front instead of being rewritten.
    """
    validate_identity(identity)
    if len(identity) > MAX_LABEL_VALUE_LENGTH or not _LABEL_VALUE.match(identity):
        raise InvalidIdentityError(
            "identity is not a valid label value (alphanumerics, '-', '_' or '.', at most 63 characters)",
            identity=identity,
        )
    return identity


def is_valid_identity(identity: str) -> bool:
    try:
        validate_identity(identity)
    except InvalidIdentityError:
        return False
    return True
