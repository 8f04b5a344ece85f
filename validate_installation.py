#!/usr/bin/env python3
"""
Validation script for LDAP SQL Sync application.

This script validates that all dependencies are installed correctly
and that the attribute mapping engine works as expected.
"""

import sys
import importlib


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_dependencies():
    """Validate all required dependencies."""
    print("=== Dependency Validation ===")

    dependencies = [
        ("ldap3", "ldap3"),
        ("PyYAML", "yaml"),
        ("SQLAlchemy", "sqlalchemy"),
        ("psycopg2", "psycopg2"),
        ("python-dotenv", "dotenv"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_core_modules():
    """Validate core application modules."""
    print("\n=== Core Module Validation ===")

    modules = [
        "ldap_sql_sync.config",
        "ldap_sql_sync.attribute_mapping",
        "ldap_sql_sync.resolver",
        "ldap_sql_sync.change_detector",
        "ldap_sql_sync.database",
        "ldap_sql_sync.ldap_client",
        "ldap_sql_sync.scheduler",
        "ldap_sql_sync.main",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_functionality():
    """Validate the mapping, resolution and change detection."""
    print("\n=== Functionality Validation ===")

    try:
        from ldap_sql_sync.attribute_mapping import build_attribute_mapping
        from ldap_sql_sync.resolver import resolve_attributes
        from ldap_sql_sync.change_detector import diff_user

        table = build_attribute_mapping("email=userPrincipalName")
        print("  ✓ Attribute mapping")

        resolved = resolve_attributes(table, {
            'dn': 'uid=alice,ou=people,dc=example,dc=com',
            'cn': 'Alice',
            'mail': 'a@example.com',
            'userPrincipalName': 'b@example.com',
        })
        assert resolved['email'] == 'b@example.com'
        print("  ✓ Attribute resolution")

        changed, record = diff_user({'name': 'Alice', 'email': 'a@example.com', 'external_id': 'alice'}, resolved)
        assert changed and record['external_id'] == 'alice'
        print("  ✓ Change detection")

        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def validate_cli():
    """Validate command-line interface."""
    print("\n=== CLI Validation ===")

    try:
        import subprocess

        result = subprocess.run([sys.executable, "-m", "ldap_sql_sync.main", "--help"],
                                capture_output=True, text=True)
        if result.returncode == 0:
            print("  ✓ Help command working")
            return True

        print("  ✗ Help command failed")
        return False

    except Exception as e:
        print(f"  ✗ CLI validation failed: {e}")
        return False


def main():
    """Run all validations."""
    print("LDAP SQL Sync - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_functionality(),
        validate_cli(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("\nNext steps:")
        print("  1. Configure LDAP and database settings in .env or config.yaml")
        print("  2. Check with: ldap-sql-sync --check-config")
        print("  3. Run sync: ldap-sql-sync --once")
        return 0
    else:
        print("✗ Some validations failed!")
        print("Please resolve the issues above before using the application.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
