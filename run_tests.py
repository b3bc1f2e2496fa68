#!/usr/bin/env python
"""Test runner script for status-tap.

Wraps pytest with the marker and coverage options used during development.
"""
from __future__ import annotations

import argparse
import subprocess
import sys


def main():
    parser = argparse.ArgumentParser(description="Run status-tap tests")
    parser.add_argument(
        "--linux",
        action="store_true",
        help="Run only tests that read live Linux interfaces",
    )
    parser.add_argument(
        "--unit",
        action="store_true",
        help="Skip integration tests",
    )
    parser.add_argument(
        "--coverage",
        action="store_true",
        help="Run with coverage report",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--file", help="Run specific test file")
    parser.add_argument(
        "--install",
        action="store_true",
        help="Install test dependencies first",
    )

    args = parser.parse_args()

    if args.install:
        print("Installing test dependencies...")
        result = subprocess.run(
            [sys.executable, "-m", "pip", "install", "-e", ".[test]"],
            check=False,
        )
        if result.returncode != 0:
            print("Failed to install dependencies")
            return 1
        print()

    cmd = [sys.executable, "-m", "pytest"]
    if args.verbose:
        cmd.append("-v")
    if args.linux:
        cmd.extend(["-m", "linux"])
    elif args.unit:
        cmd.extend(["-m", "not integration"])
    if args.coverage:
        cmd.extend(["--cov=status_tap", "--cov-report=term-missing"])
    cmd.append(args.file or "tests")

    print(f"Running: {' '.join(cmd)}")
    print()
    return subprocess.run(cmd, check=False).returncode


if __name__ == "__main__":
    sys.exit(main())
