"""
LDAP SQL Sync - Keep user attributes in a SQL database in line with an LDAP directory.

This package resolves directory attributes for every directory-managed user of
a relational store (such as the Greenlight users table) and writes changed
names, emails and display attributes back in a single transaction.
"""

__version__ = "1.0.0"
__author__ = "LDAP Sync Team"
