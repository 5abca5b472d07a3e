"""
Subprocess-backed node agent.

Drives an external beacon binary through its command line: one long-running
daemon per node, plus short-lived control commands pointed at the daemon's
control port.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from beacon_harness.chain.config import STOP_TIMEOUT
from beacon_harness.containers import BeaconValue, Group, NodeIdentity, StorageConfig
from beacon_harness.types import (
    ArtifactError,
    LeaderUnreachableError,
    NodeCommandError,
    OperationalError,
)

from .ports import NodePorts, PortAllocator
from .tls import TlsMaterial, generate_self_signed

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
"""Every node of a local run listens on loopback."""


@dataclass(frozen=True, slots=True)
class NodeSettings:
    """Run-wide settings every subprocess node is created with."""

    base_path: Path
    """Root folder of the run. Each node gets `node-{index}` below it."""

    binary: str
    """Beacon binary to execute."""

    period: int
    """Round period in seconds, handed to the DKG leader."""

    beacon_id: str = "default"
    """Beacon identifier."""

    scheme: str = "pedersen-bls-chained"
    """Signature scheme identifier."""

    with_tls: bool = False
    """Whether nodes serve TLS on their private and public ports."""

    is_candidate: bool = False
    """Whether `binary` is a candidate release that understands beacon ids."""

    stop_timeout: float = STOP_TIMEOUT
    """Seconds a stopped daemon gets to exit before it is killed."""


@dataclass(slots=True)
class ProcessNode:
    """
    A node running as a child process of the harness.

    Holds the daemon handle so that stop and restart act on the same folder
    and database across the run.
    """

    index: int
    """Index of the node. Also names its folder."""

    settings: NodeSettings
    """Run-wide settings."""

    ports: NodePorts
    """Ports the node listens on."""

    host: str = DEFAULT_HOST
    """Host the node listens on."""

    binary: str = ""
    """Binary for this node. Defaults to the run-wide binary."""

    is_candidate: bool = False
    """Whether this node's binary is a candidate release."""

    tls: TlsMaterial | None = field(default=None, repr=False)
    """TLS key and certificate when TLS is enabled."""

    _process: asyncio.subprocess.Process | None = field(default=None, repr=False)
    """Handle of the running daemon."""

    def __post_init__(self) -> None:
        if not self.binary:
            self.binary = self.settings.binary
            self.is_candidate = self.settings.is_candidate

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @property
    def identity(self) -> NodeIdentity:
        """Stable identity of the node."""
        return NodeIdentity(
            index=self.index, private_addr=self.private_addr, public_addr=self.public_addr
        )

    @property
    def private_addr(self) -> str:
        """Protocol address."""
        return f"{self.host}:{self.ports.private}"

    @property
    def public_addr(self) -> str:
        """Public HTTP API address."""
        return f"{self.host}:{self.ports.public}"

    @property
    def ctrl_addr(self) -> str:
        """Control port address."""
        return f"{self.host}:{self.ports.control}"

    @property
    def folder(self) -> Path:
        """Folder holding the node's keys, database and log."""
        return self.settings.base_path / f"node-{self.index}"

    @property
    def log_path(self) -> Path:
        """File receiving the daemon's output."""
        return self.folder / "node.log"

    # -------------------------------------------------------------------------
    # Command building
    # -------------------------------------------------------------------------

    def _control_flags(self) -> list[str]:
        flags = ["--control", str(self.ports.control)]
        # Legacy binaries serve a single beacon and reject the flag.
        if self.is_candidate:
            flags += ["--id", self.settings.beacon_id]
        return flags

    def _tls_flags(self) -> list[str]:
        if self.tls is None:
            return ["--tls-disable"]
        return ["--tls-cert", str(self.tls.cert_path), "--tls-key", str(self.tls.key_path)]

    def keygen_args(self) -> list[str]:
        """Arguments generating the node's long-term keypair."""
        args = ["generate-keypair", "--folder", str(self.folder), "--scheme", self.settings.scheme]
        if self.is_candidate:
            args += ["--id", self.settings.beacon_id]
        if self.tls is None:
            args.append("--tls-disable")
        return [*args, self.private_addr]

    def start_args(self, cert_dir: Path, storage: StorageConfig) -> list[str]:
        """Arguments launching the daemon."""
        args = [
            "start",
            "--folder",
            str(self.folder),
            "--control",
            str(self.ports.control),
            "--private-listen",
            self.private_addr,
            "--public-listen",
            self.public_addr,
            *self._tls_flags(),
        ]
        if self.tls is not None:
            args += ["--certs-dir", str(cert_dir)]
        # Without an engine the daemon reopens the database it already has.
        if storage.engine is not None:
            args += ["--db", storage.engine.value, "--memdb-size", str(storage.memdb_size)]
        if storage.pg_dsn:
            args += ["--pg-dsn", storage.pg_dsn]
        return args

    def dkg_args(
        self,
        cluster_size: int,
        threshold: int,
        timeout: int,
        is_leader: bool,
        leader_addr: str,
        beacon_offset: int,
    ) -> list[str]:
        """Arguments for one initial DKG invocation."""
        args = ["share", *self._control_flags()]
        if is_leader:
            return [
                *args,
                "--leader",
                "--nodes",
                str(cluster_size),
                "--threshold",
                str(threshold),
                "--period",
                f"{self.settings.period}s",
                "--scheme",
                self.settings.scheme,
                "--timeout",
                f"{timeout}s",
                "--beacon-offset",
                f"{beacon_offset}s",
            ]
        args += ["--connect", leader_addr]
        if self.tls is None:
            args.append("--tls-disable")
        return args

    def reshare_args(
        self,
        cluster_size: int,
        threshold: int,
        old_group_path: Path | None,
        timeout: int,
        is_leader: bool,
        leader_addr: str,
        beacon_offset: int,
    ) -> list[str]:
        """Arguments for one resharing invocation."""
        args = ["share", *self._control_flags(), "--transition"]
        if old_group_path is not None:
            args += ["--from", str(old_group_path)]
        if is_leader:
            args += [
                "--leader",
                "--nodes",
                str(cluster_size),
                "--threshold",
                str(threshold),
                "--timeout",
                f"{timeout}s",
                "--beacon-offset",
                f"{beacon_offset}s",
            ]
        else:
            args += ["--connect", leader_addr]
            if self.tls is None:
                args.append("--tls-disable")
        return args

    def beacon_args(self, group_path: Path, round: int) -> list[str]:
        """Arguments fetching one beacon value through the node's client command."""
        args = ["get", "public", "--round", str(round), "--json"]
        if self.tls is not None:
            args += ["--tls-cert", str(self.tls.cert_path)]
        return [*args, str(group_path)]

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def _run(self, args: list[str]) -> str:
        """
        Run one control command to completion.

        Raises:
            NodeCommandError: If the command exits non-zero.
        """
        argv = [self.binary, *args]
        logger.debug("Node %d running %s", self.index, " ".join(argv))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise NodeCommandError(argv, -1, str(exc)) from exc
        out, _ = await proc.communicate()
        output = out.decode(errors="replace")
        if proc.returncode != 0:
            raise NodeCommandError(argv, proc.returncode or -1, output)
        return output

    async def setup(self) -> None:
        """Create the node folder, its TLS material and its keypair."""
        try:
            self.folder.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ArtifactError(f"Cannot create node folder {self.folder}: {exc}") from exc
        if self.settings.with_tls:
            self.tls = generate_self_signed(self.host, self.folder / "tls")
        await self._run(self.keygen_args())

    # -------------------------------------------------------------------------
    # Artifacts
    # -------------------------------------------------------------------------

    def write_certificate(self, path: Path) -> None:
        """Copy the node's certificate to `path`. Nothing to copy without TLS."""
        if self.tls is None:
            return
        try:
            shutil.copyfile(self.tls.cert_path, path)
        except OSError as exc:
            raise ArtifactError(f"Cannot write certificate of node {self.index}: {exc}") from exc

    def write_public(self, path: Path) -> None:
        """Copy the public identity generated by the keypair command to `path`."""
        source = self.folder / "key" / "public.toml"
        try:
            shutil.copyfile(source, path)
        except OSError as exc:
            raise ArtifactError(f"Cannot write public key of node {self.index}: {exc}") from exc

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, cert_dir: Path, storage: StorageConfig) -> None:
        """Spawn the daemon with its output appended to the node log."""
        # A restarted node reuses its ports, so the previous daemon must be gone.
        await self.wait_stopped()
        argv = [self.binary, *self.start_args(cert_dir, storage)]
        logger.info("Starting node %s", self.private_addr)
        try:
            with self.log_path.open("ab") as log_file:
                self._process = await asyncio.create_subprocess_exec(
                    *argv, stdout=log_file, stderr=asyncio.subprocess.STDOUT
                )
        except OSError as exc:
            raise OperationalError(f"Cannot launch node {self.index}: {exc}") from exc

    async def stop(self) -> None:
        """Send the stop command, falling back to terminating the daemon."""
        try:
            await self._run(["stop", *self._control_flags()])
        except NodeCommandError as exc:
            logger.warning("Stop command failed on node %d: %s", self.index, exc.message)
            if self._process is not None and self._process.returncode is None:
                self._process.terminate()

    async def wait_stopped(self) -> None:
        """Reap the daemon, killing it if it outlives the stop timeout."""
        process, self._process = self._process, None
        if process is None:
            return
        try:
            await asyncio.wait_for(process.wait(), self.settings.stop_timeout)
        except TimeoutError:
            logger.warning(
                "Node %d still running %gs after stop, killing it",
                self.index,
                self.settings.stop_timeout,
            )
            if process.returncode is None:
                process.kill()
            await process.wait()

    async def ping(self) -> bool:
        """Whether the control port answers."""
        try:
            await self._run(["util", "ping", *self._control_flags()])
        except NodeCommandError:
            return False
        return True

    def update_binary(self, binary: str, is_candidate: bool) -> None:
        """Use another binary from the next command or restart on."""
        self.binary = binary
        self.is_candidate = is_candidate

    # -------------------------------------------------------------------------
    # Protocol rounds
    # -------------------------------------------------------------------------

    async def _run_share(self, args: list[str], is_leader: bool) -> str:
        try:
            return await self._run(args)
        except NodeCommandError as exc:
            if not is_leader and exc.leader_unreachable:
                raise LeaderUnreachableError(exc.message) from exc
            raise

    async def run_dkg(
        self,
        cluster_size: int,
        threshold: int,
        timeout: int,
        is_leader: bool,
        leader_addr: str,
        beacon_offset: int,
    ) -> None:
        """Run the initial DKG share command."""
        args = self.dkg_args(
            cluster_size, threshold, timeout, is_leader, leader_addr, beacon_offset
        )
        await self._run_share(args, is_leader)

    async def run_reshare(
        self,
        cluster_size: int,
        threshold: int,
        old_group_path: Path | None,
        timeout: int,
        is_leader: bool,
        leader_addr: str,
        beacon_offset: int,
    ) -> None:
        """Run the resharing share command."""
        args = self.reshare_args(
            cluster_size, threshold, old_group_path, timeout, is_leader, leader_addr, beacon_offset
        )
        await self._run_share(args, is_leader)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def chain_info(self, group_path: Path) -> bool:
        """Whether chain info is served yet. Writes the node's group when it is."""
        try:
            await self._run(["show", "chain-info", *self._control_flags()])
        except NodeCommandError:
            return False
        group = await self.get_group()
        group.save(group_path)
        return True

    async def get_group(self) -> Group:
        """Parse the group descriptor the node reports."""
        output = await self._run(["show", "group", "--json", *self._control_flags()])
        try:
            return Group.model_validate(json.loads(output))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ArtifactError(f"Node {self.index} reported an invalid group: {exc}") from exc

    async def get_beacon(self, group_path: Path, round: int) -> tuple[BeaconValue, str]:
        """Fetch a beacon value through the node's client command."""
        args = self.beacon_args(group_path, round)
        output = await self._run(args)
        try:
            value = BeaconValue.model_validate(json.loads(output))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise OperationalError(
                f"Node {self.index} returned an invalid beacon for round {round}: {exc}"
            ) from exc
        return value, " ".join([self.binary, *args])

    def print_log(self) -> None:
        """Log the daemon output collected so far."""
        try:
            content = self.log_path.read_text(errors="replace")
        except OSError:
            logger.info("No log for node %d", self.index)
            return
        logger.info("Log of node %d (%s):\n%s", self.index, self.private_addr, content)


@dataclass(slots=True)
class ProcessNodeFactory:
    """Creates subprocess nodes with unique ports."""

    settings: NodeSettings
    """Settings shared by every node the factory creates."""

    ports: PortAllocator = field(default_factory=PortAllocator)
    """Port allocator shared across creations."""

    async def __call__(self, index: int) -> ProcessNode:
        """Create and set up the node with the given index."""
        node = ProcessNode(index=index, settings=self.settings, ports=self.ports.allocate())
        await node.setup()
        return node
