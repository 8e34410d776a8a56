#!/usr/bin/env python3
"""
Test runner script for RTDoseHandler tests.
Run from project root: python run_tests.py
"""
import sys
from pathlib import Path

# Add src to Python path for rdh_app imports
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))

import pytest

if __name__ == "__main__":
    exit_code = pytest.main([
        "src/tests/",
        "-v",
        "--tb=short",
        "--color=yes"
    ])
    sys.exit(exit_code)
