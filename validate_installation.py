#!/usr/bin/env python3
"""
Validation script for AVS Identity.

This script checks that dependencies, package modules and the external
ssh tooling used to reach the management endpoint are all available.
"""

import sys
import shutil
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
        ("cryptography", "cryptography"),
    ]

    test_dependencies = [
        ("pytest", "pytest"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    print("\n  Test dependencies:")
    for pkg_name, import_name in test_dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")

    return all_ok


def validate_core_modules():
    """Validate core application modules."""
    print("\n=== Core Module Validation ===")

    modules = [
        "avs_identity.config",
        "avs_identity.logging_setup",
        "avs_identity.errors",
        "avs_identity.url_validator",
        "avs_identity.models",
        "avs_identity.remote",
        "avs_identity.certificates",
        "avs_identity.ldap_client",
        "avs_identity.registrar",
        "avs_identity.group_bridge",
        "avs_identity.diagnostics",
        "avs_identity.main",
        "avs_identity.sso.base",
        "avs_identity.sso.rest_client",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_tools():
    """Validate command-line tools used for the management endpoint session."""
    print("\n=== Tool Validation ===")

    all_ok = True
    for tool, purpose in (("ssh", "remote commands"), ("sshpass", "password authentication")):
        if shutil.which(tool):
            print(f"  ✓ {tool} available ({purpose})")
        else:
            print(f"  ✗ {tool} not found ({purpose})")
            if tool == "ssh":
                all_ok = False

    return all_ok


def validate_functionality():
    """Validate key functionality without touching the network."""
    print("\n=== Functionality Validation ===")

    try:
        from avs_identity.url_validator import validate_ldap_url
        server = validate_ldap_url("ldaps://dc1.example.local:636")
        assert server.authority == "ldaps://dc1.example.local:636"
        print("  ✓ URL validation")

        from avs_identity.main import _build_parser
        _build_parser()
        print("  ✓ Command line parser")

        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def main():
    """Run all validations."""
    print("AVS Identity - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_tools(),
        validate_functionality(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("\nNext steps:")
        print("  1. Copy config.example.yaml to config.yaml and fill in the SSO and management settings")
        print("  2. List sources with: python -m avs_identity.main list")
        print("  3. Diagnose with: python -m avs_identity.main debug")
        return 0
    else:
        print("✗ Some validations failed!")
        print("Please resolve the issues above before using the application.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
