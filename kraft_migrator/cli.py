"""Command-line entry point."""

import argparse
import logging
import sys
from typing import Optional, Sequence

from pydantic import ValidationError

from . import __version__
from .cluster import ClusterConnection
from .config import MigrationOptions, get_settings
from .controller import MigrationController, MigrationOutcome
from .exceptions import MigrationError
from .poller import Poller
from .resources import ResourceAccessor

logger = logging.getLogger("kraft_migrator")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kraft-migrator",
        description="Migrate a Strimzi Kafka cluster from ZooKeeper to KRaft without downtime.",
    )
    parser.add_argument("namespace", help="Namespace of the Kafka cluster")
    parser.add_argument("cluster_name", metavar="cluster", help="Name of the Kafka resource")
    parser.add_argument(
        "--controller-pool-name",
        help="Name of the controller node pool (default: controller-<cluster>)",
    )
    parser.add_argument(
        "--controller-replicas",
        type=int,
        help="Controller replicas (default: spec.zookeeper.replicas)",
    )
    parser.add_argument(
        "--controller-storage-type",
        help="persistent-claim (or persistent), ephemeral, jbod (or multi-volume)",
    )
    parser.add_argument(
        "--controller-storage-sizes",
        help="Volume size, or a comma-separated list of sizes for JBOD (e.g. 100Gi,200Gi)",
    )
    parser.add_argument(
        "--controller-storage-size",
        dest="deprecated_storage_size",
        help=argparse.SUPPRESS,
    )
    parser.add_argument(
        "--controller-storage-class",
        help="Storage class for controller volumes (default: broker or ZooKeeper class)",
    )
    parser.add_argument(
        "--wait-timeout",
        type=float,
        default=3600,
        help="Seconds to wait for each migration state (default: 3600)",
    )
    parser.add_argument(
        "--skip-prereq-check",
        dest="skip_precondition_checks",
        action="store_true",
        help="Do not convert the brokers to node pools before migrating",
    )
    parser.add_argument("--kubeconfig", help="Path to the kubeconfig file")
    parser.add_argument("--context", help="Kubeconfig context to use")
    parser.add_argument("--log-level", help="Log level (default: INFO)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def build_options(args: argparse.Namespace) -> MigrationOptions:
    """
    Turn parsed arguments into migration options.

    Raises:
        ValidationError: If the options are inconsistent
    """
    sizes = args.controller_storage_sizes
    if args.deprecated_storage_size:
        logger.warning("--controller-storage-size is deprecated, use --controller-storage-sizes")
        sizes = sizes or args.deprecated_storage_size

    return MigrationOptions(
        namespace=args.namespace,
        cluster_name=args.cluster_name,
        controller_pool_name=args.controller_pool_name,
        controller_replicas=args.controller_replicas,
        controller_storage_type=args.controller_storage_type,
        controller_storage_sizes=sizes,
        controller_storage_class=args.controller_storage_class,
        wait_timeout=args.wait_timeout,
        skip_precondition_checks=args.skip_precondition_checks,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the migration and return the process exit code."""
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=(args.log_level or settings.log_level).upper(),
        format=LOG_FORMAT,
    )

    try:
        options = build_options(args)
    except ValidationError as e:
        for error in e.errors():
            logger.error(f"✗ Invalid argument: {error['msg']}")
        return EXIT_USAGE

    try:
        with ClusterConnection.from_settings(
            settings, kubeconfig_path=args.kubeconfig, context=args.context
        ) as cluster:
            accessor = ResourceAccessor(cluster, options.namespace, settings)
            if not settings.node_pool_api_version:
                accessor.detect_node_pool_api_version()

            controller = MigrationController(
                accessor,
                options,
                settings,
                Poller(settings.poll_interval_seconds),
            )
            outcome = controller.run()
    except KeyboardInterrupt:
        logger.error("✗ Interrupted")
        return EXIT_INTERRUPTED
    except (MigrationError, ValueError) as e:
        logger.error(f"✗ Migration failed: {e}")
        return EXIT_FAILED

    if outcome is MigrationOutcome.ALREADY_MIGRATED:
        logger.info("Nothing to do")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
