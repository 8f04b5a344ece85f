"""
Change detection between stored user rows and resolved LDAP attributes.
"""

import logging
from typing import Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

ID_COLUMN = 'external_id'


def diff_user(stored: Mapping[str, str], resolved: Mapping[str, str],
              id_column: str = ID_COLUMN, identifier: Optional[str] = None,
              reporter: Optional[logging.Logger] = None) -> Tuple[bool, Dict[str, str]]:
    """
    Decide whether a stored user needs an update.

    Every column of ``resolved`` is compared with ``stored``; a column missing
    from ``stored`` counts as changed. The update record is the complete
    resolved map plus the identifier column, since the update writes all
    mapped columns.

    Args:
        stored: Current column values of the user
        resolved: Column values resolved from LDAP
        id_column: Name of the identifier column
        identifier: Identifier value, taken from ``stored`` if not given
        reporter: Logger-like sink for debug messages (defaults to module logger)

    Returns:
        Tuple of (changed, record); record is empty if nothing changed
    """
    reporter = reporter or logger
    if identifier is None:
        identifier = stored.get(id_column)

    changed = False
    for column, new_value in resolved.items():
        if column not in stored or stored[column] != new_value:
            reporter.debug(f"User {identifier} attribute {column} changed: "
                           f"{stored.get(column)!r} -> {new_value!r}")
            changed = True

    if not changed:
        return False, {}

    record = dict(resolved)
    record[id_column] = identifier
    return True, record
