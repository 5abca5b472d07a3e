"""
Beacon harness CLI entry point.

Bring up a local beacon network, run a DKG, check the beacon, knock a node
out and back in, reshare to a new committee and check the new beacon.

Usage::

    python -m beacon_harness --nodes 5 --threshold 3 --period 3
    python -m beacon_harness --config run.yaml --tls
    python -m beacon_harness --nodes 87 --sweep --repeat 10

Options:
    --config        YAML file with HarnessConfig fields
    --nodes         Size of the initial cluster
    --threshold     Threshold of the initial group (default: nodes // 2 + 1)
    --period        Round period in seconds
    --binary        Node binary to run
    --new-nodes     Nodes joining at resharing (default: 2)
    --remove        Old nodes leaving at resharing (default: 1)
    --keep          Indices of the old nodes kept at resharing, e.g. --keep 1 2
    --sweep         Repeat the run from --nodes down to 3 nodes in steps of 3
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import yaml
from pydantic import ValidationError

from beacon_harness.config import HarnessConfig
from beacon_harness.orchestrator import Orchestrator
from beacon_harness.types import HarnessError

logger = logging.getLogger(__name__)

SWEEP_STEP = 3
"""Node count decrement between two runs of a sweep."""

SWEEP_MIN_NODES = 3
"""Smallest cluster a sweep runs."""


def default_threshold(nodes: int) -> int:
    """Smallest majority of `nodes`."""
    return nodes // 2 + 1


def sweep_sizes(start: int) -> list[int]:
    """Cluster sizes of a sweep: `start`, `start - 3`, ... down to 3."""
    return list(range(start, SWEEP_MIN_NODES - 1, -SWEEP_STEP))


def build_parser() -> argparse.ArgumentParser:
    """Command-line interface of the harness."""
    parser = argparse.ArgumentParser(
        prog="beacon_harness",
        description="Drive a local randomness beacon network through DKG, failures and resharing",
    )
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--nodes", type=int, help="Size of the initial cluster")
    parser.add_argument("--threshold", type=int, help="Threshold of the initial group")
    parser.add_argument("--period", type=int, help="Round period in seconds")
    parser.add_argument("--binary", help="Node binary to run")
    parser.add_argument("--candidate", action="store_true", help="Binary is a candidate release")
    parser.add_argument("--beacon-id", help="Beacon identifier")
    parser.add_argument("--base-path", type=Path, help="Run folder (wiped at start)")
    parser.add_argument("--tls", action="store_true", help="Run nodes with TLS")
    parser.add_argument(
        "--no-public-check",
        action="store_true",
        help="Skip checking beacons through the public HTTP API",
    )
    parser.add_argument("--dkg-timeout", type=int, help="DKG timeout in seconds")
    parser.add_argument("--new-nodes", type=int, default=2, help="Nodes joining at resharing")
    parser.add_argument("--remove", type=int, default=1, help="Old nodes leaving at resharing")
    parser.add_argument(
        "--keep",
        type=int,
        nargs="+",
        help="Indices of the old nodes kept at resharing. Overrides --remove",
    )
    parser.add_argument("--reshare-threshold", type=int, help="Threshold after resharing")
    parser.add_argument("--sweep", action="store_true", help="Sweep cluster sizes down to 3")
    parser.add_argument("--repeat", type=int, default=1, help="Repetitions of a sweep")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser


def load_config(args: argparse.Namespace) -> HarnessConfig:
    """Defaults, then the YAML file, then the flags."""
    config = HarnessConfig.from_yaml_file(args.config) if args.config else HarnessConfig()
    nodes = args.nodes or config.nodes
    threshold = args.threshold
    if threshold is None and args.nodes is not None:
        threshold = default_threshold(nodes)
    return config.with_overrides(
        nodes=nodes,
        threshold=threshold,
        period=args.period,
        binary=args.binary,
        is_candidate=args.candidate or None,
        beacon_id=args.beacon_id,
        base_path=args.base_path,
        with_tls=args.tls or None,
        check_public_api=False if args.no_public_check else None,
        dkg_timeout=args.dkg_timeout,
    )


async def run_scenario(orchestrator: Orchestrator, args: argparse.Namespace) -> None:
    """Full run: DKG, failure and recovery, resharing."""
    config = orchestrator.config
    await orchestrator.start_current_nodes()
    await orchestrator.run_dkg()
    await orchestrator.wait_genesis()
    await orchestrator.check_current_beacon()

    # Knock out the last node. The rest still holds the threshold.
    victim = config.nodes
    if config.nodes - 1 >= config.threshold:
        await orchestrator.stop_nodes(victim)
        await orchestrator.wait_period()
        await orchestrator.check_current_beacon(victim)
        await orchestrator.start_node(victim)
        await orchestrator.wait(config.period * 2)
        await orchestrator.wait_period()
        await orchestrator.check_current_beacon()

    if args.new_nodes <= 0:
        return
    keep = args.keep or range(args.remove + 1, config.nodes + 1)
    size = len(set(keep)) + args.new_nodes
    reshare_threshold = args.reshare_threshold or default_threshold(size)
    await orchestrator.setup_new_nodes(args.new_nodes)
    await orchestrator.create_resharing_group(keep, reshare_threshold)
    await orchestrator.start_new_nodes()
    await orchestrator.run_resharing()
    await orchestrator.wait_transition()
    await orchestrator.check_new_beacon()


async def run_once(config: HarnessConfig, args: argparse.Namespace) -> bool:
    """
    Run the scenario for one configuration.

    Returns:
        True if the run passed.
    """
    orchestrator: Orchestrator | None = None
    try:
        orchestrator = await Orchestrator.create(config)
        await run_scenario(orchestrator, args)
    except HarnessError as exc:
        logger.error("Run with %d nodes failed: %s", config.nodes, exc.message)
        if orchestrator is not None:
            orchestrator.print_logs()
        return False
    finally:
        if orchestrator is not None:
            await orchestrator.shutdown()
    logger.info("Run with %d nodes passed", config.nodes)
    return True


async def run(args: argparse.Namespace) -> int:
    """Run once, or sweep, and return the process exit code."""
    try:
        config = load_config(args)
    except (OSError, yaml.YAMLError, ValidationError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    if not args.sweep:
        return 0 if await run_once(config, args) else 1

    failed = 0
    for _ in range(args.repeat):
        for nodes in sweep_sizes(config.nodes):
            sized = config.with_overrides(nodes=nodes, threshold=default_threshold(nodes))
            if not await run_once(sized, args):
                failed += 1
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
