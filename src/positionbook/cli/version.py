"""Version subcommand - Show the installed positionbook release and where it keeps data."""

from importlib.metadata import PackageNotFoundError, version

from .common import console, load_settings


def register_subcommand(subparsers):
    """Register the version subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "version",
        help="Show the positionbook release and data directory",
        description="Show the installed positionbook release, the data directory and the configured mirror.",
    )
    parser.set_defaults(func=run)


def run(args):
    """Print the package version alongside the resolved storage settings.

    Returns:
        int: Exit code (0 for success, 1 if the configuration is invalid).
    """
    try:
        release = version("positionbook")
    except PackageNotFoundError:
        release = "unknown (not installed)"

    try:
        settings = load_settings(args)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    console.print(f"positionbook Version: {release}")
    console.print(f"Data directory: {settings.data_dir}")
    console.print(f"Mirror: {settings.mirror_type}")
    return 0
