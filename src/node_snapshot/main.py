"""CLI entrypoint for node-snapshot."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from node_snapshot import __version__
from node_snapshot.collector import default_factory
from node_snapshot.config import Settings, get_settings
from node_snapshot.errors import SnapshotError
from node_snapshot.serializer import Format, new_writer
from node_snapshot.snapshotter import (
    AgentConfig,
    CleanupPolicy,
    NodeSnapshotter,
    parse_node_selectors,
    parse_tolerations,
)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="node-snapshot",
        description="Capture a configuration snapshot of a Kubernetes node.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--verbose",
        "-v",
        "--debug",
        dest="verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    snap = sub.add_parser(
        "snapshot",
        help="Collect node configuration locally or through an agent Job",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    snap.add_argument(
        "--output",
        "-o",
        default=None,
        help="File path, '-' for stdout, or cm://namespace/name (default: stdout, or the result ConfigMap with --deploy-agent)",
    )
    snap.add_argument(
        "--format",
        choices=[f.value for f in Format],
        default=None,
        help="Output format (default: from env or 'json')",
    )
    snap.add_argument(
        "--kubeconfig",
        type=Path,
        default=None,
        help="Path to kubeconfig (default: KUBECONFIG env or ~/.kube/config)",
    )
    snap.add_argument("--context", default=None, help="Kubernetes context to use")
    snap.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for collection or for the agent Job to complete",
    )

    agent = snap.add_argument_group("agent")
    agent.add_argument(
        "--deploy-agent",
        "--agent",
        dest="deploy_agent",
        action="store_true",
        help="Run the snapshot as a Job on a cluster node instead of locally",
    )
    agent.add_argument("--namespace", "-n", default=None, help="Namespace for the agent (default: from env or 'gpu-operator')")
    agent.add_argument("--image", default=None, help="Agent container image")
    agent.add_argument(
        "--image-pull-secret",
        dest="image_pull_secrets",
        action="append",
        default=[],
        help="Image pull secret name (repeatable)",
    )
    agent.add_argument("--job-name", default=None, help="Agent Job name")
    agent.add_argument("--service-account-name", default=None, help="Agent ServiceAccount name")
    agent.add_argument(
        "--node-selector",
        dest="node_selectors",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Node selector for agent placement (repeatable)",
    )
    agent.add_argument(
        "--toleration",
        dest="tolerations",
        action="append",
        default=[],
        metavar="KEY[=VALUE]:EFFECT",
        help="Toleration for agent placement (repeatable; default tolerates all taints)",
    )
    agent.add_argument(
        "--cleanup-policy",
        choices=[p.value for p in CleanupPolicy],
        default=None,
        help="What to delete after the run (default: from env or 'all')",
    )
    agent.add_argument(
        "--privileged",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Run the agent privileged; needed by the GPU and SystemD collectors",
    )
    return parser.parse_args(argv)


def _agent_config(args: argparse.Namespace, settings: Settings) -> AgentConfig:
    return AgentConfig(
        kubeconfig=str(settings.kubeconfig) if settings.kubeconfig else None,
        context=args.context or settings.context,
        namespace=args.namespace or settings.namespace,
        image=args.image or settings.image,
        image_pull_secrets=args.image_pull_secrets,
        job_name=args.job_name or settings.job_name,
        service_account_name=args.service_account_name or settings.service_account_name,
        node_selector=parse_node_selectors(args.node_selectors),
        tolerations=parse_tolerations(args.tolerations),
        timeout=args.timeout or settings.job_timeout,
        pod_ready_timeout=settings.pod_ready_timeout,
        cleanup_timeout=settings.cleanup_timeout,
        cleanup_policy=CleanupPolicy(args.cleanup_policy or settings.cleanup_policy),
        output=args.output if args.output is not None else settings.output,
        format=Format.parse(args.format or settings.format),
        debug=args.verbose,
        privileged=settings.privileged if args.privileged is None else args.privileged,
    )


def _snapshotter(args: argparse.Namespace, settings: Settings) -> NodeSnapshotter:
    if args.deploy_agent:
        return NodeSnapshotter(agent_config=_agent_config(args, settings))

    kubeconfig = str(settings.kubeconfig) if settings.kubeconfig else None
    context = args.context or settings.context
    output = args.output if args.output is not None else settings.output
    fmt = Format.parse(args.format or settings.format)
    return NodeSnapshotter(
        factory=default_factory(settings.systemd_services, kubeconfig=kubeconfig, context=context),
        serializer=new_writer(fmt, output),
        collection_timeout=args.timeout or settings.collection_timeout,
    )


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for the node-snapshot CLI."""
    args = _parse_args(argv)
    err = Console(stderr=True)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err, rich_tracebacks=True)],
    )
    logger = logging.getLogger("node_snapshot")
    if not args.verbose:
        logger.setLevel(logging.WARNING)

    try:
        settings = get_settings()
        if args.kubeconfig:
            settings.kubeconfig = args.kubeconfig
        snapshotter = _snapshotter(args, settings)
        asyncio.run(snapshotter.measure())
        return 0
    except KeyboardInterrupt:
        err.print("Interrupted", style="yellow")
        return 130
    except SnapshotError as e:
        logger.debug("snapshot failed", exc_info=True)
        err.print(f"Error: {e}", style="red", markup=False, highlight=False)
        return 1
    except Exception as e:
        logging.exception("node-snapshot failed")
        err.print(f"Error: {e}", style="red", markup=False, highlight=False)
        return 2


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
