#!/usr/bin/env python3
"""
Garbage collect IntegrationKits and squash the images of the kits in use.

Kits whose image no Integration runs are deleted. With --remove-images the
kits are also arranged by base image: a used kit built on top of unused kits
gets a new image in which all the layers it added are flattened into one,
the unused kits and their images are deleted, and the Integrations running
the old image are pointed at the new one (which redeploys them).

Workflow:
- Refuse to run while any IntegrationKit is still building
- List kits and Integrations, plan squashes and deletions
- Print the plan and ask for confirmation
- Squash every chain, then delete every unused kit

Usage examples:
  # Preview what would happen
  python squash_kits.py --dry-run

  # Delete unused kits only
  python squash_kits.py -n my-namespace

  # Squash images and delete unused kits and their images, without prompting
  python squash_kits.py -n my-namespace --remove-images -y
"""

import argparse
import logging
import sys

from kitgc.collector import KitGarbageCollector
from kitgc.config_manager import config_manager
from kitgc.error_utils import ActionableError
from kitgc.logging_utils import get_logger, log_exception, setup_logging

logger = get_logger(__name__)


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Delete unused IntegrationKits and squash the images of used ones",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview what would happen
  python squash_kits.py --dry-run

  # Squash images and delete unused kits and their images
  python squash_kits.py --remove-images

  # Do not ask for confirmation
  python squash_kits.py --remove-images --assumeyes
        """
    )

    parser.add_argument(
        '-n', '--namespace',
        help='Namespace holding the IntegrationKits (default: from config)'
    )

    parser.add_argument(
        '-d', '--dry-run',
        action='store_true',
        default=config_manager.is_dry_run_by_default(),
        help='Only print what would be squashed and deleted'
    )

    parser.add_argument(
        '-y', '--assumeyes',
        action='store_true',
        help='Apply the plan without asking for confirmation'
    )

    parser.add_argument(
        '-r', '--remove-images',
        action='store_true',
        help='Squash images of used kits and delete images of unused kits from the registry'
    )

    parser.add_argument(
        '--output',
        help='Plan report path (default: reports/kit-retention-plan.json)'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    return parser.parse_args(argv)


def main(argv=None):
    """Main function"""
    setup_logging()
    args = parse_arguments(argv)
    if args.verbose:
        setup_logging(logging.DEBUG)
        logging.getLogger().setLevel(logging.DEBUG)

    assume_yes = args.assumeyes or not config_manager.requires_confirmation()

    try:
        collector = KitGarbageCollector.from_config(
            config_manager,
            namespace=args.namespace,
            remove_images=args.remove_images,
            dry_run=args.dry_run,
            assume_yes=assume_yes,
        )
        if args.output:
            collector.report_path = args.output

        logger.info("=" * 60)
        logger.info(f"   IntegrationKit garbage collection in namespace {collector.namespace}")
        logger.info("=" * 60)

        collector.run()

    except KeyboardInterrupt:
        logger.warning("\n⚠️  Operation interrupted by user")
        sys.exit(1)
    except ActionableError as e:
        log_exception(logger, "\n❌ Operation failed", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
