#!/usr/bin/env python3
"""
tgState - Environment Compatibility Checker

This script checks if your Python environment can run the server.
Run this before starting it to ensure everything is properly configured.
"""

import importlib
import re
import sys

REQUIRED_PACKAGES = [
    ('aiohttp', '3.9'),
    ('aiofiles', '23.0'),
    ('dotenv', '1.0'),  # python-dotenv imports as dotenv
]


def check_python_version(version_info=None):
    """Check Python version compatibility"""
    v = version_info or sys.version_info
    print(f"🐍 Python Version: {v[0]}.{v[1]}.{v[2]}")

    if (v[0], v[1]) < (3, 10):
        print("❌ ERROR: Python 3.10+ is required")
        return False
    print("✅ Python version is compatible")
    return True


def parse_version(version):
    parts = []
    for piece in version.split('.')[:2]:
        match = re.match(r'\d+', piece)
        parts.append(int(match.group()) if match else 0)
    return tuple(parts)


def check_package(package_name, min_version=None):
    """Check if a package is installed with optional version check"""
    try:
        module = importlib.import_module(package_name)
    except ImportError:
        print(f"❌ {package_name} is not installed")
        return False

    version = getattr(module, '__version__', 'unknown')
    if min_version and version != 'unknown':
        if parse_version(version) < parse_version(min_version):
            print(f"❌ {package_name} {version} is too old (requires {min_version}+)")
            return False

    print(f"✅ {package_name} {version}")
    return True


def check_requirements(packages=REQUIRED_PACKAGES):
    """Check all required packages"""
    print("\n📦 Checking Required Packages:")
    all_good = True
    for package, min_version in packages:
        if not check_package(package, min_version):
            all_good = False
    return all_good


def main():
    """Main compatibility check"""
    print("🔍 tgState - Compatibility Check")
    print("=" * 55)

    python_ok = check_python_version()
    packages_ok = check_requirements()

    print("\n" + "=" * 55)

    if python_ok and packages_ok:
        print("🎉 Environment is compatible! You can start the server.")
        return 0
    print("💥 Compatibility issues found. Please fix the errors above.")
    print("\nTo install/upgrade packages, run:")
    print("   pip install -e .")
    return 1


if __name__ == "__main__":
    sys.exit(main())
