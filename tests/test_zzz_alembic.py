"""Alembic migration tests. Need a PostgreSQL XPL_DATABASE_URL.

File named test_zzz_alembic.py to sort LAST in pytest collection order.
"""

import os
import subprocess
import sys

import pytest

pytestmark = pytest.mark.skipif(
    not os.environ.get("XPL_DATABASE_URL", "").startswith("postgresql"),
    reason="alembic migrations target PostgreSQL",
)


def test_alembic_upgrade_head() -> None:
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
    )
    assert result.returncode == 0, f"alembic upgrade failed: {result.stderr}"


def test_alembic_current_shows_head() -> None:
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "current"],
        capture_output=True,
        text=True,
    )
    assert result.returncode == 0
    assert "001_progress_ledger" in result.stdout
