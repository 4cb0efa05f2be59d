"""Snapshot through an agent Job: placement parsing and the run lifecycle."""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, TextIO

from node_snapshot.errors import JobError, PlacementError, PodNotReadyError
from node_snapshot.k8s.agent import (
    AgentConfig,
    CleanupPolicy,
    Deployer,
    SnapshotResult,
    Toleration,
    default_tolerations,
)
from node_snapshot.k8s.client import KubeClients
from node_snapshot.serializer import is_configmap_uri, is_stdout, write_to_file

logger = logging.getLogger(__name__)

__all__ = [
    "AgentConfig",
    "CleanupPolicy",
    "Toleration",
    "measure_with_agent",
    "parse_node_selectors",
    "parse_tolerations",
]


def parse_node_selectors(selectors: list[str]) -> dict[str, str]:
    """Parse ``key=value`` strings into a node selector map."""
    result: dict[str, str] = {}
    for s in selectors:
        key, sep, value = s.partition("=")
        if not sep or not key:
            raise PlacementError(f"invalid node selector {s!r}, expected key=value")
        result[key] = value
    return result


def parse_tolerations(tolerations: list[str]) -> list[Toleration]:
    """Parse ``key=value:effect`` (Equal) or ``key:effect`` (Exists) strings.

    An empty value, as in ``key=:effect``, also means Exists. With no input
    the agent tolerates every taint.
    """
    if not tolerations:
        return default_tolerations()
    result = []
    for t in tolerations:
        parts = t.split(":")
        if len(parts) != 2 or not parts[0]:
            raise PlacementError(f"invalid toleration {t!r}, expected key=value:effect or key:effect")
        head, effect = parts
        key, _, value = head.partition("=")
        if not key:
            raise PlacementError(f"invalid toleration {t!r}: empty key")
        result.append(
            Toleration(
                key=key,
                operator="Equal" if value else "Exists",
                value=value or None,
                effect=effect or None,
            )
        )
    return result


async def _cleanup(deployer: Deployer) -> None:
    """Run cleanup under its own deadline; failures are logged with a manual command."""
    cfg = deployer.config
    try:
        async with asyncio.timeout(cfg.cleanup_timeout):
            await deployer.cleanup(cfg.cleanup_policy)
    except TimeoutError:
        logger.warning("cleanup did not finish within %ss", cfg.cleanup_timeout)
        logger.warning("clean up manually with: %s", deployer.manual_cleanup_command())
    except Exception as e:
        # never replaces the outcome of the run itself
        logger.warning("cleanup failed: %s", e)
        logger.warning("clean up manually with: %s", deployer.manual_cleanup_command())


@asynccontextmanager
async def _cleanup_on_exit(deployer: Deployer) -> AsyncIterator[Deployer]:
    """Yield ``deployer`` and clean up after it however the block exits."""
    try:
        yield deployer
    finally:
        await _cleanup(deployer)


async def _stop(task: asyncio.Task | None) -> None:
    """Cancel the log task and wait for it to finish."""
    if task is None:
        return
    task.cancel()
    await asyncio.wait([task])
    if not task.cancelled() and task.exception() is not None:
        logger.warning("agent log streaming stopped: %s", task.exception())


async def _run(deployer: Deployer, sink: TextIO) -> SnapshotResult:
    """Provision, deploy and wait for the agent, then fetch its snapshot."""
    await deployer.provision()
    await deployer.deploy()

    log_task = None
    try:
        await deployer.wait_for_pod_ready()
    except PodNotReadyError as e:
        logger.warning("%s; continuing without log streaming", e)
    else:
        log_task = asyncio.create_task(deployer.stream_logs(sink), name="agent-logs")

    try:
        await deployer.wait_for_completion()
    except JobError as e:
        if e.logs is None:
            e.logs = await deployer.get_pod_logs()
        raise
    finally:
        await _stop(log_task)

    return await deployer.get_snapshot()


async def measure_with_agent(
    cfg: AgentConfig,
    clients: KubeClients | None = None,
    log_sink: TextIO | None = None,
    deployer: Deployer | None = None,
    stdout: TextIO | None = None,
) -> SnapshotResult:
    """Deploy the agent Job, wait for its snapshot and deliver it.

    Cleanup of the Job (and RBAC, per policy) runs exactly once however the
    run ends. The result goes to ``cfg.destination``: nothing more for a
    ConfigMap URI, stdout for ``-``/``stdout://``/empty, a file otherwise.
    """
    if deployer is None:
        if clients is None:
            clients = await asyncio.to_thread(KubeClients.from_config, cfg.kubeconfig, cfg.context)
        deployer = Deployer(clients, cfg)
    sink = log_sink or sys.stderr

    logger.info("deploying snapshot agent to namespace %s", cfg.namespace)
    async with _cleanup_on_exit(deployer):
        result = await _run(deployer, sink)

    dest = cfg.destination
    if is_configmap_uri(dest):
        logger.info("snapshot stored in %s", dest)
    elif is_stdout(dest):
        out = stdout or sys.stdout
        out.write(result.data.decode())
        out.flush()
    else:
        await asyncio.to_thread(write_to_file, dest, result.data)
        logger.info("snapshot written to %s", dest)
    return result
