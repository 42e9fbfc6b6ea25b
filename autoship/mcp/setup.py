"""Locate, or fetch and build, the tool-provider server."""

from __future__ import annotations

import logging
import shlex
import subprocess
import tempfile
import time
from pathlib import Path
from typing import List, Optional

from autoship.mcp.supervisor import StartupError
from autoship.validation.config import Config

logger = logging.getLogger(__name__)

SERVER_ENTRYPOINT = "dist/index.js"
SETUP_TIMEOUT = 600


def local_server_path(workspace: Path, repository_path: str) -> Optional[Path]:
    """Return the built server inside ``workspace`` if there is one."""
    candidate = Path(workspace) / repository_path / SERVER_ENTRYPOINT
    return candidate if candidate.exists() else None


def resolve_server_command(config: Config, workspace: Path) -> List[str]:
    """
    Decide how to launch the tool-provider.

    Order: an explicit ``server.command``; a server already built inside the
    workspace; a fresh checkout when ``server.auto_setup`` is on.
    """
    server = config.merged.server
    if server.command:
        return list(server.command)

    local = local_server_path(workspace, server.repository_path)
    if local:
        logger.info("Using local tool-provider at %s", local)
        return ["node", str(local)]

    if not server.auto_setup:
        raise StartupError(
            "No tool-provider configured. Set server.command in .autoship/config.yaml "
            "or enable server.auto_setup."
        )

    return ["node", str(setup_server(server.repository, server.repository_path))]


def setup_server(repository: str, repository_path: str, target: Optional[Path] = None) -> Path:
    """
    Sparse-clone ``repository`` and build the server under ``repository_path``.

    Returns the path to the built entrypoint.
    """
    target = target or Path(tempfile.gettempdir()) / f"autoship-mcp-{int(time.time() * 1000)}"
    server_dir = target / repository_path
    logger.info("Setting up tool-provider in %s", target)

    steps = [
        (["git", "clone", "--depth", "1", "--filter=blob:none", "--sparse", repository, str(target)], None),
        (["git", "-C", str(target), "sparse-checkout", "set", repository_path], None),
        (["npm", "ci"], server_dir),
        (["npm", "run", "build"], server_dir),
    ]
    for command, cwd in steps:
        _run_step(command, cwd)

    entrypoint = server_dir / SERVER_ENTRYPOINT
    if not entrypoint.exists():
        raise StartupError(f"Build finished but {entrypoint} is missing")
    return entrypoint


def _run_step(command: List[str], cwd: Optional[Path]) -> None:
    logger.info("  %s", shlex.join(command))
    try:
        subprocess.run(
            command,
            cwd=str(cwd) if cwd else None,
            check=True,
            capture_output=True,
            text=True,
            timeout=SETUP_TIMEOUT,
        )
    except FileNotFoundError as exc:
        raise StartupError(f"Required program not found: {command[0]}") from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or exc.stdout or "").strip()[-500:]
        raise StartupError(f"Server setup step failed: {shlex.join(command)}\n{detail}") from exc
    except subprocess.TimeoutExpired as exc:
        raise StartupError(f"Server setup step timed out: {shlex.join(command)}") from exc
