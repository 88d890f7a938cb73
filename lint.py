#!/usr/bin/env python3
"""
Linting script for the project.

Runs ruff, isort and black over the code base, fixing issues by default.

    python lint.py            # fix in place
    python lint.py --check    # report only, exit 1 on problems
    python lint.py --test     # also run the unit and integration tests
"""

import subprocess
import sys
from pathlib import Path

TARGETS = ["coach", "cogs", "tests", "lint.py", "main.py"]


def run_command(command: list[str], description: str) -> bool:
    """
    Run a command from the project root.

    Returns:
        True if the command exited with status 0
    """
    print(f"\n{'=' * 80}")
    print(f"Running: {description}")
    print(f"Command: {' '.join(command)}")
    print(f"{'=' * 80}\n")

    result = subprocess.run(command, cwd=Path(__file__).parent)

    passed = result.returncode == 0
    print(f"\n{'✅' if passed else '❌'} {description} {'completed' if passed else 'failed'}\n")
    return passed


def build_operations(check_only: bool, run_tests: bool) -> list[tuple[list[str], str]]:
    if check_only:
        operations = [
            (["ruff", "check", *TARGETS], "Ruff linting"),
            (["black", "--check", *TARGETS], "Black formatting check"),
            (["isort", "--check-only", *TARGETS], "isort import sorting check"),
        ]
    else:
        operations = [
            (["ruff", "check", "--fix", *TARGETS], "Ruff auto-fix"),
            (["isort", *TARGETS], "isort import sorting"),
            (["black", *TARGETS], "Black code formatting"),
        ]

    if run_tests:
        operations.append((["pytest", "-m", "not slow"], "pytest"))
    return operations


def main() -> int:
    check_only = "--check" in sys.argv
    run_tests = "--test" in sys.argv

    if check_only:
        print("\n🔍 Running in CHECK-ONLY mode (no files will be modified)\n")
    else:
        print("\n🔧 Running in AUTO-FIX mode (files will be modified)\n")

    operations = build_operations(check_only, run_tests)
    results = [run_command(command, description) for command, description in operations]

    print(f"\n{'=' * 80}")
    print("SUMMARY")
    print(f"{'=' * 80}\n")

    for (_, description), passed in zip(operations, results):
        print(f"{'✅ COMPLETED' if passed else '❌ FAILED'}: {description}")

    if all(results):
        print("\n🎉 All checks passed!\n")
        return 0

    if check_only:
        print("\n⚠️  Some checks failed. Run 'python lint.py' (without --check) to auto-fix.\n")
    else:
        print("\n⚠️  Some operations failed. Please review the errors above.\n")
    return 1


if __name__ == "__main__":
    sys.exit(main())
