# main.py
"""CLI entry point for the Ontoloom knowledge pipeline."""

from __future__ import annotations

import argparse
import sys

from orchestration.cli_runner import run


def main(argv: list[str] | None = None) -> int:
    """Parse command-line arguments and process observations."""
    parser = argparse.ArgumentParser(
        description="Turn free-text observations into knowledge graph updates."
    )
    parser.add_argument("observations", nargs="*", help="Observation text to process")
    parser.add_argument(
        "--file", default=None, help="Path to a file with one observation per line"
    )
    parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Create Neo4j constraints and indexes before running",
    )
    parser.add_argument(
        "--seed", action="store_true", help="Load the demo organization graph"
    )
    parser.add_argument(
        "--stats", action="store_true", help="Print system metrics when done"
    )
    parser.add_argument(
        "--no-critic", action="store_true", help="Skip the critic stage"
    )
    parser.add_argument(
        "--query",
        action="append",
        default=[],
        help="Ask a question about the graph (repeatable)",
    )
    parser.add_argument(
        "--visualize",
        action="store_true",
        help="Print graph nodes and edges as JSON",
    )
    args = parser.parse_args(argv)
    if not (
        args.observations
        or args.file
        or args.query
        or args.visualize
        or args.init_schema
        or args.seed
        or args.stats
    ):
        parser.error("nothing to do: pass observations, --file, --query or another action")
    failures = run(
        args.observations,
        observation_file=args.file,
        init_schema=args.init_schema,
        seed=args.seed,
        show_stats=args.stats,
        no_critic=args.no_critic,
        queries=args.query,
        visualize=args.visualize,
    )
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
