"""Join the current container to Docker's default bridge network."""

from __future__ import annotations

import socket
import subprocess


def unbreak_docker() -> bool:
    """Connect this host's container to the "bridge" network.

    Lets a development container reach test containers on the default network.
    Failures are ignored; returns True only if the docker command succeeded.
    """
    try:
        hostname = socket.gethostname()
    except OSError:
        return False
    try:
        result = subprocess.run(
            ["docker", "network", "connect", "bridge", hostname],
            check=False,
            capture_output=True,
        )
    except OSError:
        return False
    return result.returncode == 0