#!/usr/bin/env python3
"""
Test runner for the flooring CRM.
Runs each suite module in order and prints a summary.
"""

import sys
import pytest
from pathlib import Path

TESTS_DIR = Path(__file__).parent

# Test modules in order, adapters first
TEST_MODULES = [
    "speech_recognizer",
    "command_parser",
    "tts_manager",
    "conversation_manager",
    "voice_learning",
    "integrations",
    "crm_store",
    "estimates",
    "projects",
    "estimate_sharing",
    "damage_analysis",
    "payments",
    "actions",
    "voice_assistant",
    "logging_conf",
    "server",
]


def _module_path(module_name):
    return str(TESTS_DIR / f"test_{module_name}.py")


def run_tests():
    """Run all unit test modules"""

    sys.path.insert(0, str(TESTS_DIR.parent))

    print("🧪 Running Unit Tests for Flooring CRM")
    print("=" * 60)

    passed_modules = 0
    failed_modules = 0

    for module in TEST_MODULES:
        print(f"\n📋 Testing Module: {module}")
        print("-" * 40)

        result = pytest.main([
            _module_path(module),
            "-v",
            "--tb=short",
            "--no-header",
        ])

        if result == 0:
            print(f"✅ {module}: PASSED")
            passed_modules += 1
        else:
            print(f"❌ {module}: FAILED")
            failed_modules += 1

    # Summary
    print("\n" + "=" * 60)
    print("📊 TEST SUMMARY")
    print("=" * 60)
    print(f"Total Modules: {len(TEST_MODULES)}")
    print(f"Passed: {passed_modules}")
    print(f"Failed: {failed_modules}")

    if failed_modules == 0:
        print("\n🎉 All tests passed!")
        return True

    print(f"\n⚠️  {failed_modules} module(s) failed. Please check the test output above.")
    return False


def run_individual_test(module_name):
    """Run tests for a specific module"""
    print(f"🧪 Running tests for: {module_name}")
    print("=" * 40)

    sys.path.insert(0, str(TESTS_DIR.parent))
    result = pytest.main([_module_path(module_name), "-v", "--tb=long"])
    return result == 0


if __name__ == "__main__":
    if len(sys.argv) > 1:
        success = run_individual_test(sys.argv[1])
    else:
        success = run_tests()
    sys.exit(0 if success else 1)
