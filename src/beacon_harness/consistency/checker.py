"""
Cross-node beacon consistency.

Two passes query the same round on every node:

1. The control path, through each node's own client command. The first
   answer becomes the reference. Later answers must carry the same signature
   whenever they carry the same round.
2. The public HTTP API. The round is pinned in the request, so any difference
   from the reference is a divergence between what a node knows and what it
   serves.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from beacon_harness.chain.config import DIRECT_CHECK_ATTEMPTS, DIRECT_CHECK_BACKOFF
from beacon_harness.containers import BeaconValue
from beacon_harness.metrics import beacon_check_retries, beacon_checks
from beacon_harness.node import NodeAgent
from beacon_harness.types import BeaconMismatchError, EmptyRosterError, PublicApiMismatchError

from .public_api import PublicApiClient

logger = logging.getLogger(__name__)


def check_consistent(
    reference: BeaconValue,
    value: BeaconValue,
    *,
    index: int = 0,
    reference_index: int = 0,
) -> bool:
    """
    Compare a beacon value against the reference.

    Returns:
        True if both are the same round with the same signature, False if the
        rounds differ (lag).

    Raises:
        BeaconMismatchError: If the rounds match but the signatures do not.
    """
    if value.round != reference.round:
        return False
    if value.signature != reference.signature:
        raise BeaconMismatchError(value.round, index, reference_index)
    return True


def check_public_matches(reference: BeaconValue, value: BeaconValue, *, index: int) -> None:
    """
    Compare a public API answer against the control-path reference.

    Raises:
        PublicApiMismatchError: If the round or the signature differs.
    """
    if value.round != reference.round:
        raise PublicApiMismatchError(
            index, "round", expected=str(reference.round), actual=str(value.round)
        )
    if value.signature != reference.signature:
        raise PublicApiMismatchError(
            index,
            "signature",
            expected=reference.signature.hex(),
            actual=value.signature.hex(),
        )


@dataclass(slots=True)
class ConsistencyChecker:
    """Runs both consistency passes over a set of nodes."""

    public_api: PublicApiClient = field(default_factory=PublicApiClient)
    """Client used for the public pass."""

    check_public_api: bool = True
    """Whether the public pass runs at all."""

    direct_attempts: int = DIRECT_CHECK_ATTEMPTS
    """Control-path attempts on a node lagging behind the reference."""

    direct_backoff: float = DIRECT_CHECK_BACKOFF
    """Pause between two control-path attempts."""

    async def check(self, nodes: Sequence[NodeAgent], group_path: Path, round: int) -> BeaconValue:
        """
        Check every node agrees on `round` through both paths.

        Returns:
            The reference value.

        Raises:
            BeaconMismatchError: If two nodes sign the same round differently.
            PublicApiMismatchError: If a public endpoint disagrees with the reference.
            PublicApiError: If a public endpoint never answers usefully.
            EmptyRosterError: If `nodes` is empty.
        """
        reference = await self.check_direct(nodes, group_path, round)
        await self.check_public(nodes, reference)
        logger.info("Reference beacon:\n%s", reference.model_dump_json(by_alias=True, indent=4))
        return reference

    async def check_direct(
        self, nodes: Sequence[NodeAgent], group_path: Path, round: int
    ) -> BeaconValue:
        """Control-path pass. The first node queried sets the reference."""
        logger.info("Checking randomness beacon for round %d via the control path", round)
        reference: BeaconValue | None = None
        reference_index = 0

        for node in nodes:
            for attempt in range(1, self.direct_attempts + 1):
                value, command = await node.get_beacon(group_path, round)
                beacon_checks.labels(path="direct").inc()

                if reference is None:
                    reference, reference_index = value, node.index
                    logger.info('Example command is: "%s"', command)
                    break

                if check_consistent(
                    reference, value, index=node.index, reference_index=reference_index
                ):
                    break

                # Same question, different round: the node is lagging.
                logger.warning(
                    "Round mismatch between node %d (round %d) and node %d (round %d), "
                    "trying again (attempt %d/%d)",
                    reference_index,
                    reference.round,
                    node.index,
                    value.round,
                    attempt,
                    self.direct_attempts,
                )
                beacon_check_retries.labels(path="direct").inc()
                await asyncio.sleep(self.direct_backoff)
            else:
                logger.warning("Node %d still lagging after %d attempts", node.index, attempt)

        if reference is None:
            raise EmptyRosterError("Consistency check")
        return reference

    async def check_public(self, nodes: Sequence[NodeAgent], reference: BeaconValue) -> None:
        """Public-path pass against the reference set by the control path."""
        if not self.check_public_api:
            logger.warning("Public API check disabled, skipping it")
            return

        logger.info("Checking randomness for round %d via the public HTTP API", reference.round)
        printed = False
        for node in nodes:
            cert_path = self._export_certificate(node) if self.public_api.use_tls else None
            try:
                if not printed:
                    url = self.public_api.url_for(node.public_addr, reference.round)
                    logger.info(
                        'Example command: "%s"', self.public_api.example_command(url, cert_path)
                    )
                    printed = True
                value = await self.public_api.fetch(node.public_addr, reference.round, cert_path)
            finally:
                if cert_path is not None:
                    cert_path.unlink(missing_ok=True)

            beacon_checks.labels(path="public").inc()
            check_public_matches(reference, value, index=node.index)

    @staticmethod
    def _export_certificate(node: NodeAgent) -> Path:
        """Write the node's certificate to a temporary file to trust it."""
        fd, name = tempfile.mkstemp(prefix="cert")
        os.close(fd)
        path = Path(name)
        node.write_certificate(path)
        return path
