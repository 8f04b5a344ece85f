#!/usr/bin/env python3
"""
Unit tests for resolving raw LDAP records into database columns.
"""

import unittest
from unittest.mock import Mock

from ldap_sql_sync.attribute_mapping import build_attribute_mapping
from ldap_sql_sync.resolver import resolve_attributes, resolve_intermediate


class TestResolver(unittest.TestCase):
    """Test cases for resolve_intermediate and resolve_attributes."""

    def setUp(self):
        self.table = build_attribute_mapping()
        self.raw = {
            'dn': 'uid=alice,ou=people,dc=example,dc=com',
            'cn': 'Alice Liddell',
            'givenName': 'Alice',
            'sn': 'Liddell',
            'mail': 'alice@example.com',
            'uid': 'alice',
        }

    def test_full_record(self):
        resolved = resolve_attributes(self.table, self.raw)
        self.assertEqual(resolved, {
            'social_uid': 'uid=alice,ou=people,dc=example,dc=com',
            'name': 'Alice Liddell',
            'email': 'alice@example.com',
            'username': 'alice',
        })

    def test_first_source_wins(self):
        self.raw['displayName'] = 'Ali'
        resolved = resolve_attributes(self.table, self.raw)
        self.assertEqual(resolved['name'], 'Alice Liddell')

    def test_empty_preferred_falls_back(self):
        self.raw['cn'] = ''
        self.raw['displayName'] = 'Ali'
        resolved = resolve_attributes(self.table, self.raw)
        self.assertEqual(resolved['name'], 'Ali')

    def test_unset_key_is_omitted(self):
        resolved = resolve_attributes(self.table, self.raw)
        self.assertNotIn('image', resolved)

        self.raw['jpegPhoto'] = ''
        resolved = resolve_attributes(self.table, self.raw)
        self.assertNotIn('image', resolved)

    def test_unprojected_keys_are_dropped(self):
        intermediate = resolve_intermediate(self.table, self.raw)
        self.assertEqual(intermediate['first_name'], 'Alice')
        self.assertEqual(intermediate['last_name'], 'Liddell')

        resolved = resolve_attributes(self.table, self.raw)
        self.assertNotIn('first_name', resolved)

    def test_override_takes_precedence(self):
        table = build_attribute_mapping('email=userPrincipalName')
        resolved = resolve_attributes(table, {'mail': 'a@x.com', 'userPrincipalName': 'b@x.com'})
        self.assertEqual(resolved['email'], 'b@x.com')

    def test_single_source_table(self):
        table = build_attribute_mapping('email=userPrincipalName', defaults={'email': ('mail',)})
        resolved = resolve_attributes(table, {'mail': 'a@x.com', 'userPrincipalName': 'b@x.com'})
        self.assertEqual(resolved, {'email': 'b@x.com'})

    def test_custom_projection(self):
        resolved = resolve_attributes(self.table, self.raw, projection={'first_name': 'given_name'})
        self.assertEqual(resolved, {'given_name': 'Alice'})

    def test_reporter_receives_debug_messages(self):
        reporter = Mock()
        resolve_attributes(self.table, self.raw, reporter=reporter)

        messages = [call.args[0] for call in reporter.debug.call_args_list]
        self.assertTrue(any('image' in message for message in messages))
        self.assertTrue(any('first_name' in message for message in messages))


if __name__ == '__main__':
    unittest.main()
