"""Test helpers for the knative-operator-local tool."""

from pathlib import Path

TESTDATA = Path(__file__).parent.parent / "testdata"
KODATA = TESTDATA / "kodata"
