"""
Attribute mapping tables for translating LDAP attributes to database columns.

Directory servers name the same concept differently (``mail`` versus
``userPrincipalName``), so attributes are first mapped onto a small
intermediate vocabulary and only then projected onto database columns.

Two immutable tables are involved:

- the mapping table, intermediate key -> ordered source attribute names,
  built from ``DEFAULT_ATTRIBUTE_MAPPING`` plus an override string
- ``COLUMN_PROJECTION``, intermediate key -> database column
"""

import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from ldap_sql_sync.config import ConfigurationError

logger = logging.getLogger(__name__)

MappingTable = Mapping[str, Tuple[str, ...]]

# Pseudo attribute carrying the entry's distinguished name
DN_ATTRIBUTE = 'dn'

DEFAULT_ATTRIBUTE_MAPPING: MappingTable = MappingProxyType({
    'uid': (DN_ATTRIBUTE,),
    'name': ('cn', 'displayName'),
    'first_name': ('givenName',),
    'last_name': ('sn',),
    'email': ('mail', 'email', 'userPrincipalName'),
    'nickname': ('uid', 'userid', 'sAMAccountName'),
    'image': ('jpegPhoto',),
})

# first_name and last_name have no column and are only resolved
COLUMN_PROJECTION: Mapping[str, str] = MappingProxyType({
    'uid': 'social_uid',
    'name': 'name',
    'email': 'email',
    'nickname': 'username',
    'image': 'image',
})

DIRECTIVE_SEPARATOR = ';'


class AttributeMappingError(ConfigurationError):
    """Raised when the attribute mapping override string cannot be parsed."""
    pass


def parse_directives(override: Optional[str]) -> List[Tuple[str, str]]:
    """
    Parse an override string such as ``email=userPrincipalName;name=displayName``.

    Args:
        override: Semicolon separated ``key=value`` directives, may be None

    Returns:
        List of (key, value) pairs in the order they appear

    Raises:
        AttributeMappingError: If a non-empty directive contains no ``=``
    """
    directives = []
    if not override:
        return directives

    for segment in override.split(DIRECTIVE_SEPARATOR):
        if segment == '':
            continue

        key, sep, value = segment.partition('=')
        if not sep:
            raise AttributeMappingError(f"Attribute mapping directive cannot be split: {segment!r}")

        directives.append((key, value))

    return directives


def build_attribute_mapping(override: Optional[str] = None,
                            defaults: MappingTable = DEFAULT_ATTRIBUTE_MAPPING) -> MappingTable:
    """
    Build the attribute mapping table for one sync pass.

    Overrides for a known key are prepended to its sources, so the directive
    listed last for a key ends up most preferred. A directive for an unknown
    key introduces that key with a single source.

    Args:
        override: Override string, see :func:`parse_directives`
        defaults: Base table to merge the overrides into

    Returns:
        Read-only mapping of intermediate key to a tuple of source attributes

    Raises:
        AttributeMappingError: If the override string is malformed
    """
    directives = parse_directives(override)

    table: Dict[str, Tuple[str, ...]] = dict(defaults)
    for key, value in directives:
        table[key] = (value,) + table.get(key, ())
        logger.debug(f"Updated attribute mapping: {key} -> {list(table[key])}")

    return MappingProxyType(table)


def requested_attributes(table: MappingTable) -> List[str]:
    """
    Flatten a mapping table into the attribute list for an LDAP search.

    The ``dn`` pseudo attribute is left out as every entry carries its DN.
    """
    attributes = []
    for sources in table.values():
        for source in sources:
            if source != DN_ATTRIBUTE and source not in attributes:
                attributes.append(source)
    return attributes
