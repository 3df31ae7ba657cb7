"""pluginsync CLI - Main entry point."""

import logging

import click

from pluginsync import __version__

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
_HANDLER_NAME = "pluginsync-console"


def _setup_logging(verbose: bool = False) -> None:
    """Configure root logging with a single console handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    for handler in list(root_logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            root_logger.removeHandler(handler)

    console = logging.StreamHandler()
    console.set_name(_HANDLER_NAME)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(console)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group()
@click.version_option(version=__version__, prog_name="pluginsync")
def cli():
    """pluginsync - Plugin downloader for Theia-based applications.

    Resolves the plugins listed in a package.json, downloads them with
    their extension packs and dependencies, and pins them in a lockfile.
    """


from .download_commands import download, lock  # noqa: E402

cli.add_command(download)
cli.add_command(lock)


if __name__ == "__main__":
    cli()
