"""
Timing constants for driving a beacon network.

Values are in seconds unless the name says otherwise.
"""

from typing_extensions import Final

BEACON_OFFSET: Final = 2
"""Delay between the end of a DKG or resharing and the first round of the new beacon."""

GENESIS_WAIT: Final = 3.0
"""Extra sleep after genesis before the first round is checked."""

AFTER_PERIOD_WAIT: Final = 5.0
"""
Extra sleep after a round or transition boundary.

Nodes on a loaded machine need time to aggregate and store a round before
every one of them can serve it.
"""

STARTUP_TIMEOUT: Final = 30.0
"""Deadline for every started node to answer a ping."""

STARTUP_POLL_INTERVAL: Final = 2.0
"""Pause between two ping sweeps while nodes start."""

CHAIN_INFO_POLL_INTERVAL: Final = 3.0
"""Pause between two chain-info sweeps after a DKG or resharing."""

LEADER_STAGGER: Final = 0.2
"""Pause between launching the round leader and launching the followers."""

LEADER_CONNECT_ATTEMPTS: Final = 5
"""How many times a follower tries to reach a leader that is not listening yet."""

DIRECT_CHECK_ATTEMPTS: Final = 3
"""Attempts per node when its round lags behind the reference on the control path."""

DIRECT_CHECK_BACKOFF: Final = 0.1
"""Pause between two control-path attempts on a lagging node."""

PUBLIC_CHECK_ATTEMPTS: Final = 10
"""Attempts per node on the public HTTP API before giving up."""

RESTART_ATTEMPTS: Final = 9
"""Ping attempts after restarting a node. Attempt n waits n**2 seconds on failure."""

DEFAULT_DKG_TIMEOUT: Final = 60
"""Timeout handed to each node's DKG invocation."""

STOP_TIMEOUT: Final = 10.0
"""Time a stopped daemon gets to exit before it is killed."""
