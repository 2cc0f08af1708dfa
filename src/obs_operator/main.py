"""CLI entrypoint for the observability operator."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from rich.logging import RichHandler

from obs_operator import __version__
from obs_operator.config import get_settings
from obs_operator.pipeline import build_controller, run_operator


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Observability operator: install and reconcile a managed monitoring stack.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--namespace",
        "-n",
        default=None,
        help="Namespace holding Observability instances (default: from env)",
    )
    parser.add_argument(
        "--kubeconfig",
        type=Path,
        default=None,
        help="Path to kubeconfig (default: in-cluster, then KUBECONFIG or ~/.kube/config)",
    )
    parser.add_argument(
        "--context",
        default=None,
        help="Kubernetes context to use",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single reconcile pass and exit",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser.parse_args()


def main() -> int:
    """Entrypoint for obs-operator CLI."""
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    try:
        settings = get_settings()
        if args.kubeconfig:
            settings.kubeconfig = args.kubeconfig
        if args.context:
            settings.context = args.context

        results = run_operator(
            namespace=args.namespace,
            once=args.once,
            settings=settings,
            controller=build_controller(settings),
        )
        return 0 if all(r.ok for r in results) else 1
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.exception("Operator failed")
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
