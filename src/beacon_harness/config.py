"""
Run configuration for the harness.

Values come from defaults, then an optional YAML file, then command-line
flags. The environment only chooses where runs keep their files by default.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator, model_validator

from beacon_harness.chain import config as timing
from beacon_harness.containers import StorageConfig
from beacon_harness.types import CamelModel

BASE_PATH_ENV = "BEACON_HARNESS_DIR"
"""Environment variable overriding the default run folder."""

DEFAULT_BEACON_ID = "default"
"""Canonical id of the unnamed beacon."""


def default_base_path() -> Path:
    """Run folder: `$BEACON_HARNESS_DIR`, else `<tmpdir>/beacon-harness`."""
    override = os.environ.get(BASE_PATH_ENV)
    if override:
        return Path(override)
    return Path(tempfile.gettempdir()) / "beacon-harness"


def canonical_beacon_id(beacon_id: str) -> str:
    """Map the empty beacon id to the default one."""
    return beacon_id or DEFAULT_BEACON_ID


class HarnessConfig(CamelModel):
    """Everything a run needs to know before the first node exists."""

    model_config = CamelModel.model_config | {"extra": "forbid", "frozen": True}

    nodes: int = Field(default=3, ge=1)
    """Size of the initial cluster."""

    threshold: int = Field(default=2, ge=1)
    """Threshold of the initial group."""

    period: int = Field(default=3, ge=1)
    """Round period in seconds."""

    beacon_id: str = DEFAULT_BEACON_ID
    """Beacon identifier."""

    scheme: str = "pedersen-bls-chained"
    """Signature scheme identifier."""

    base_path: Path = Field(default_factory=default_base_path)
    """Run folder. Wiped at the start of every run."""

    binary: str = "drand"
    """Node binary."""

    is_candidate: bool = False
    """Whether `binary` is a candidate release."""

    with_tls: bool = False
    """Whether nodes serve TLS."""

    check_public_api: bool = True
    """Whether beacon checks also go through the public HTTP API."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    """Storage for nodes started fresh."""

    dkg_timeout: int = Field(default=timing.DEFAULT_DKG_TIMEOUT, ge=1)
    """Timeout handed to each node's DKG or resharing invocation, in seconds."""

    beacon_offset: int = Field(default=timing.BEACON_OFFSET, ge=0)
    """Seconds between the end of a round and the first beacon of the new group."""

    genesis_wait: float = Field(default=timing.GENESIS_WAIT, ge=0)
    """Margin after genesis."""

    after_period_wait: float = Field(default=timing.AFTER_PERIOD_WAIT, ge=0)
    """Margin after a round or transition boundary."""

    startup_timeout: float = Field(default=timing.STARTUP_TIMEOUT, gt=0)
    """Deadline for started nodes to answer pings."""

    startup_poll_interval: float = Field(default=timing.STARTUP_POLL_INTERVAL, gt=0)
    """Pause between two ping sweeps during start."""

    chain_info_poll_interval: float = Field(default=timing.CHAIN_INFO_POLL_INTERVAL, gt=0)
    """Pause between two chain-info sweeps after a round."""

    leader_stagger: float = Field(default=timing.LEADER_STAGGER, ge=0)
    """Head start of the round leader."""

    timing_log: Path = Path("dkg-timings.csv")
    """CSV file receiving one timing line per round."""

    stop_timeout: float = Field(default=timing.STOP_TIMEOUT, gt=0)
    """Seconds a stopped node process gets to exit before it is killed."""

    shutdown_grace: float = Field(default=0.0, ge=0)
    """Seconds to linger after sending stop signals."""

    @field_validator("beacon_id")
    @classmethod
    def _canonical_beacon_id(cls, v: str) -> str:
        return canonical_beacon_id(v)

    @model_validator(mode="after")
    def _check_threshold(self) -> HarnessConfig:
        """Threshold must be reachable by the initial cluster."""
        if self.threshold > self.nodes:
            raise ValueError(f"threshold ({self.threshold}) exceeds nodes ({self.nodes})")
        return self

    @property
    def cert_dir(self) -> Path:
        """Shared certificate folder."""
        return self.base_path / "certs"

    @property
    def group_path(self) -> Path:
        """Descriptor of the initial group."""
        return self.base_path / "group.toml"

    @property
    def new_group_path(self) -> Path:
        """Descriptor of the reshared group."""
        return self.base_path / "group2.toml"

    def with_overrides(self, **overrides: Any) -> HarnessConfig:
        """Copy with the non-None overrides applied and validated."""
        updates = {k: v for k, v in overrides.items() if v is not None}
        return HarnessConfig.model_validate(self.model_dump() | updates)

    @classmethod
    def from_yaml_file(cls, path: Path | str) -> HarnessConfig:
        """
        Load configuration from a YAML file.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            pydantic.ValidationError: If the data fails validation.
        """
        path = Path(path)
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})
