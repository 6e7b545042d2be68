"""Command-line argument parsing for the ADO people metrics report."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence


def _positive_int(value: str) -> int:
    """Parse and validate a positive integer CLI value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive integer.
    """
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed < 0:
        raise argparse.ArgumentTypeError("must be 0 or greater")

    return parsed


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for the people metrics report.

    Connection settings (organization, project, repository, token) come from
    the environment; see :func:`ado_metrics.config.load_config_from_env`.
    """
    parser = argparse.ArgumentParser(
        prog="ado-metrics",
        description=(
            "Generate per-person engineering metrics (flow, authored PRs, "
            "reviews) from Azure DevOps."
        ),
    )

    parser.add_argument(
        "--days",
        type=_positive_int,
        default=30,
        help="Number of days of history to analyze (default: 30).",
    )
    parser.add_argument(
        "--threshold",
        type=_non_negative_int,
        default=3,
        help="Minimum sample size before a metric section is reported (default: 3).",
    )
    parser.add_argument(
        "--target-ref",
        action="append",
        default=[],
        help="Target branch ref to include (repeatable, default: refs/heads/main).",
    )
    parser.add_argument(
        "--state-to-do",
        default="To Do",
        help="Work item state treated as 'to do' (default: 'To Do').",
    )
    parser.add_argument(
        "--state-in-progress",
        default="Doing",
        help="Work item state treated as 'in progress' (default: 'Doing').",
    )
    parser.add_argument(
        "--state-done",
        default="Done",
        help="Work item state treated as 'done' (default: 'Done').",
    )
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Bypass the cache when listing directory users.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING).",
    )

    return parser.parse_args(argv)
