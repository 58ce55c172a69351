"""
Entry point for the IIS to cloud hosting migration tool.
"""

import argparse
import sys

from iis_migrator.migration_tool import DEFAULT_CONFIG_FILE, IisMigrationTool


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Migrate an IIS website to a cloud application hosting environment")
    p.add_argument("--config", default=DEFAULT_CONFIG_FILE, help="Path to the JSON configuration file")
    p.add_argument("--site", default=None, help="IIS site name (overrides site.name)")
    p.add_argument("--run-id", default=None, help="Identifier of this run; must not exist in the workspace")
    p.add_argument("--workspace", default=None, help="Directory holding run folders (overrides migration.workspace)")
    p.add_argument(
        "--report-only",
        action="store_true",
        help="Only generate the readiness report, without changing anything",
    )
    p.add_argument("--verbose", action="store_true", help="Print DEBUG messages")
    return p.parse_args(argv)


def main(argv=None) -> int:
    """
    Main function to run the IIS migration tool.
    """
    args = parse_args(argv)
    tool = IisMigrationTool(config_file=args.config)
    if args.site:
        tool.config["site"]["name"] = args.site
    if args.workspace:
        tool.config["migration"]["workspace"] = args.workspace
    if args.verbose:
        tool.config["migration"]["verbose"] = True

    tool.log_message("Starting IIS migration.")
    return tool.run(report_only=args.report_only, run_id=args.run_id)


if __name__ == "__main__":
    sys.exit(main())
