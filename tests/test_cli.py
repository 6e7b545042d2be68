"""Tests for command-line argument parsing."""

import sys
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ado_metrics.cli import parse_args


def test_parse_args_defaults(monkeypatch):
    """Verify defaults when no arguments are given."""
    monkeypatch.setattr(sys, "argv", ["ado-metrics"])

    args = parse_args()

    assert args.days == 30
    assert args.threshold == 3
    assert args.target_ref == []
    assert args.state_to_do == "To Do"
    assert args.state_in_progress == "Doing"
    assert args.state_done == "Done"
    assert args.refresh is False
    assert args.log_level == "WARNING"


def test_parse_args_with_valid_arguments():
    """Verify explicit values, including repeated target refs."""
    args = parse_args(
        [
            "--days",
            "14",
            "--threshold",
            "0",
            "--target-ref",
            "refs/heads/main",
            "--target-ref",
            "refs/heads/release",
            "--state-done",
            "Closed",
            "--refresh",
            "--log-level",
            "DEBUG",
        ]
    )

    assert args.days == 14
    assert args.threshold == 0
    assert args.target_ref == ["refs/heads/main", "refs/heads/release"]
    assert args.state_done == "Closed"
    assert args.refresh is True
    assert args.log_level == "DEBUG"


@pytest.mark.parametrize("value", ["0", "-1", "abc"])
def test_parse_args_with_invalid_days_fails_validation(value):
    """Verify --days must be a positive integer."""
    with pytest.raises(SystemExit):
        parse_args(["--days", value])


def test_parse_args_with_negative_threshold_fails_validation():
    with pytest.raises(SystemExit):
        parse_args(["--threshold", "-2"])
