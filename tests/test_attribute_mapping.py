#!/usr/bin/env python3
"""
Unit tests for the attribute mapping table builder.

Tests default table contents, override precedence and parse errors.
"""

import unittest

from ldap_sql_sync.attribute_mapping import (
    AttributeMappingError,
    COLUMN_PROJECTION,
    DEFAULT_ATTRIBUTE_MAPPING,
    build_attribute_mapping,
    parse_directives,
    requested_attributes,
)
from ldap_sql_sync.config import ConfigurationError


class TestParseDirectives(unittest.TestCase):
    """Test cases for override string parsing."""

    def test_empty_override(self):
        self.assertEqual(parse_directives(None), [])
        self.assertEqual(parse_directives(''), [])

    def test_directives_in_order(self):
        directives = parse_directives('email=userPrincipalName;name=displayName')
        self.assertEqual(directives, [('email', 'userPrincipalName'), ('name', 'displayName')])

    def test_empty_segments_are_skipped(self):
        directives = parse_directives(';email=mail;;nickname=uid;')
        self.assertEqual(directives, [('email', 'mail'), ('nickname', 'uid')])

    def test_split_on_first_equals_only(self):
        self.assertEqual(parse_directives('image=a=b'), [('image', 'a=b')])

    def test_missing_equals_is_an_error(self):
        with self.assertRaises(AttributeMappingError):
            parse_directives('email=mail;broken')


class TestBuildAttributeMapping(unittest.TestCase):
    """Test cases for build_attribute_mapping."""

    def test_defaults_without_override(self):
        table = build_attribute_mapping()
        self.assertEqual(dict(table), dict(DEFAULT_ATTRIBUTE_MAPPING))
        self.assertEqual(table['email'], ('mail', 'email', 'userPrincipalName'))

    def test_override_is_prepended(self):
        table = build_attribute_mapping('email=userPrincipalName')
        self.assertEqual(table['email'], ('userPrincipalName', 'mail', 'email', 'userPrincipalName'))

    def test_last_directive_is_most_preferred(self):
        table = build_attribute_mapping('name=first;name=second;name=third')
        self.assertEqual(table['name'][:3], ('third', 'second', 'first'))
        self.assertEqual(table['name'][3:], DEFAULT_ATTRIBUTE_MAPPING['name'])

    def test_unknown_key_gets_single_source(self):
        table = build_attribute_mapping('department=ou')
        self.assertEqual(table['department'], ('ou',))

    def test_default_keys_survive_overrides(self):
        table = build_attribute_mapping('email=upn;department=ou')
        for key in DEFAULT_ATTRIBUTE_MAPPING:
            self.assertIn(key, table)

    def test_malformed_override_yields_no_table(self):
        with self.assertRaises(AttributeMappingError) as ctx:
            build_attribute_mapping('email=upn;nonsense')
        self.assertIn('nonsense', str(ctx.exception))

    def test_mapping_error_is_configuration_error(self):
        with self.assertRaises(ConfigurationError):
            build_attribute_mapping('nonsense')

    def test_table_is_read_only(self):
        table = build_attribute_mapping('email=upn')
        with self.assertRaises(TypeError):
            table['email'] = ('mail',)

    def test_defaults_are_not_modified(self):
        build_attribute_mapping('email=upn')
        self.assertEqual(DEFAULT_ATTRIBUTE_MAPPING['email'], ('mail', 'email', 'userPrincipalName'))

    def test_custom_defaults(self):
        table = build_attribute_mapping('email=userPrincipalName', defaults={'email': ('mail',)})
        self.assertEqual(dict(table), {'email': ('userPrincipalName', 'mail')})


class TestRequestedAttributes(unittest.TestCase):
    """Test cases for flattening a table into search attributes."""

    def test_flattened_without_duplicates_or_dn(self):
        table = build_attribute_mapping('email=uid')
        attributes = requested_attributes(table)

        self.assertNotIn('dn', attributes)
        self.assertEqual(len(attributes), len(set(attributes)))
        for name in ('cn', 'displayName', 'givenName', 'sn', 'mail', 'userPrincipalName',
                     'uid', 'sAMAccountName', 'jpegPhoto'):
            self.assertIn(name, attributes)

    def test_projection_has_no_name_columns(self):
        self.assertNotIn('first_name', COLUMN_PROJECTION)
        self.assertNotIn('last_name', COLUMN_PROJECTION)
        self.assertEqual(COLUMN_PROJECTION['nickname'], 'username')
        self.assertEqual(COLUMN_PROJECTION['uid'], 'social_uid')


if __name__ == '__main__':
    unittest.main()
