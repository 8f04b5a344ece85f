"""
Resolution of raw LDAP attributes into database column values.

For each intermediate key the first source attribute with a non-empty value
wins. Resolved keys are then projected onto column names; keys without a
column are dropped.
"""

import logging
from typing import Dict, Mapping, Optional

from ldap_sql_sync.attribute_mapping import COLUMN_PROJECTION, MappingTable

logger = logging.getLogger(__name__)


def resolve_intermediate(table: MappingTable, raw: Mapping[str, str],
                         reporter: Optional[logging.Logger] = None) -> Dict[str, str]:
    """
    Resolve one value per intermediate key.

    Args:
        table: Attribute mapping table
        raw: Raw directory record, attribute name -> value
        reporter: Logger-like sink for debug messages (defaults to module logger)

    Returns:
        Intermediate key -> value; keys without any non-empty source are omitted
    """
    reporter = reporter or logger
    resolved = {}

    for key, sources in table.items():
        value = next((raw[source] for source in sources if raw.get(source)), None)
        if value is None:
            reporter.debug(f"No LDAP attribute found for intermediate attribute {key} "
                           f"(tried {', '.join(sources)})")
            continue
        resolved[key] = value

    return resolved


def resolve_attributes(table: MappingTable, raw: Mapping[str, str],
                       projection: Mapping[str, str] = COLUMN_PROJECTION,
                       reporter: Optional[logging.Logger] = None) -> Dict[str, str]:
    """
    Resolve a raw directory record and project it onto database columns.

    Args:
        table: Attribute mapping table
        raw: Raw directory record
        projection: Intermediate key -> column name
        reporter: Logger-like sink for debug messages (defaults to module logger)

    Returns:
        Column name -> value for every resolved key that has a column
    """
    reporter = reporter or logger
    columns = {}

    for key, value in resolve_intermediate(table, raw, reporter).items():
        column = projection.get(key)
        if column is None:
            reporter.debug(f"Intermediate attribute {key} has no database column")
            continue
        columns[column] = value

    return columns
