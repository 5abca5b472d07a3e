"""
Exception hierarchy for the harness.

Two families sit under `HarnessError`:

- `InvariantViolation`: the network broke a protocol guarantee. Never retried.
- `OperationalError`: a node or the local machine failed to do something.
  Retry policy, if any, lives at the call site.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from beacon_harness.containers import NodeIdentity


class HarnessError(Exception):
    """
    Base exception for all harness errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


class EmptyRosterError(HarnessError):
    """Raised when an operation over nodes is given none, e.g. every node was excluded."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} needs at least one node")


class InvariantViolation(HarnessError):
    """Base class for protocol invariant violations."""


class KeyMismatchError(InvariantViolation):
    """
    Raised when two groups that must agree carry different collective keys.

    Attributes:
        subject: Who reported the offending key (a node address or a group label).
        reference: Who reported the reference key.
    """

    def __init__(self, subject: str, reference: str) -> None:
        self.subject = subject
        self.reference = reference
        super().__init__(f"{subject} has a different collective key than {reference}")


class BeaconMismatchError(InvariantViolation):
    """
    Raised when two nodes return different signatures for the same round.

    Attributes:
        round: The round both nodes reported.
        index: Index of the node that disagreed.
        reference_index: Index of the node that set the reference value.
    """

    def __init__(self, round: int, index: int, reference_index: int) -> None:
        self.round = round
        self.index = index
        self.reference_index = reference_index
        super().__init__(
            f"Inconsistent beacon signature at round {round} between node {index} "
            f"and node {reference_index}"
        )


class PublicApiMismatchError(InvariantViolation):
    """
    Raised when the public HTTP endpoint disagrees with the control path.

    Attributes:
        index: Index of the node whose endpoint disagreed.
        field: Which field differed ("round" or "signature").
    """

    def __init__(self, index: int, field: str, *, expected: str, actual: str) -> None:
        self.index = index
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Inconsistent {field} from public API vs control path on node {index}: "
            f"expected {expected}, got {actual}"
        )


class OperationalError(HarnessError):
    """Base class for node and I/O failures."""


class StartupTimeoutError(OperationalError):
    """Raised when started nodes do not all answer pings before the deadline."""

    def __init__(self, timeout: float, unreachable: Sequence[int]) -> None:
        self.timeout = timeout
        self.unreachable = list(unreachable)
        super().__init__(
            f"Failed to ping nodes {self.unreachable} within {timeout:g} seconds"
        )


class NodeRestartError(OperationalError):
    """Raised when a stopped node cannot be brought back."""


class NodeNotFoundError(OperationalError):
    """Raised when an operation names a node index that does not exist."""

    def __init__(self, index: int) -> None:
        self.index = index
        super().__init__(f"Node {index} does not exist")


class ArtifactError(OperationalError):
    """Raised when a certificate, public key or group file cannot be written or read."""


LEADER_UNREACHABLE_MARKERS: tuple[str, ...] = (
    "connection refused",
    "unavailable",
    "error while dialing",
    "no such host",
)
"""Substrings in command output that mean the DKG leader was not listening yet."""


class NodeCommandError(OperationalError):
    """
    Raised when a node control command exits with a non-zero status.

    Attributes:
        args_: The argv that was executed.
        returncode: The process exit status.
        output: Combined stdout and stderr.
    """

    def __init__(self, args: Sequence[str], returncode: int, output: str) -> None:
        self.args_ = list(args)
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"Command {' '.join(self.args_)!r} exited with {returncode}: {output.strip()[:500]}"
        )

    @property
    def leader_unreachable(self) -> bool:
        """Whether the failure looks like the leader was not accepting connections."""
        lowered = self.output.lower()
        return any(marker in lowered for marker in LEADER_UNREACHABLE_MARKERS)


class LeaderUnreachableError(OperationalError):
    """Raised by an agent when a follower could not reach the round leader."""


class PublicApiError(OperationalError):
    """Raised when the public endpoint never returns a usable body."""


class ProtocolRoundError(OperationalError):
    """
    Raised when one or more participants of a DKG or resharing round fail.

    Every failure is kept, not just the first one observed.

    Attributes:
        kind: "dkg" or "reshare".
        failures: (identity, exception) for each failed participant, in roster order.
    """

    def __init__(
        self,
        kind: str,
        failures: Sequence[tuple[NodeIdentity, BaseException]],
    ) -> None:
        self.kind = kind
        self.failures = list(failures)
        details = "; ".join(
            f"node {identity.index} ({identity.private_addr}): {exc!r}"
            for identity, exc in self.failures
        )
        super().__init__(f"{kind} round failed on {len(self.failures)} node(s): {details}")
