"""Constants for operator-triggered removal of malformed identities.

Template misconfiguration in the CRM has historically injected users whose
id, name, or email still holds unresolved ``{{...}}`` variables, plus a few
test and sub-account users that leaked in before placeholder filtering
existed. IdentityRepository turns these into its cleanup SQL filters.
"""

from __future__ import annotations

# Known garbage ids observed in production data
BOGUS_IDENTITY_IDS: tuple[str, ...] = (
    "JDrhQtQ7dGE93h7odSqg",
    "JDrhQtQ7dGEvFhF83Sqg",
    "ewYJUHEpmcAuBHMjgzak",  # test1 test1
    "SuDSBek2TbPSRmUZP5C4",  # sub-account client
    "BTtn9q0ujLZ8nlcxOJW0",  # sub-account client
)

# Literal tenant scope written by an unresolved launch URL
PLACEHOLDER_SCOPE_VALUE = "location"
