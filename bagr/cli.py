"""Command line interface for bagr."""
import logging
from pathlib import Path
from typing import Optional
import click

from bagr.bag import create_bag
from bagr.digest import DigestAlgorithm
from bagr.errors import BagError
from bagr.metadata import parse_info_option, prep_bag_info
from bagr.rebag import rebag
from bagr.tags import LABEL_BAGGING_DATE, LABEL_SOFTWARE_AGENT, BagInfo
from bagr.utils import format_date

CLICK_DATE_FORMATS = ['%Y-%m-%d']


def validate_info(ctx, param, values):
    for value in values:
        try:
            parse_info_option(value)
        except ValueError as e:
            raise click.BadParameter(str(e))
    return values


def algorithm_option(help: str):
    return click.option(
        '-a',
        '--digest-algorithm',
        'algorithms',
        multiple=True,
        type=click.Choice(DigestAlgorithm.names(), case_sensitive=False),
        help=help,
    )


workers_option = click.option(
    '-w',
    '--workers',
    type=click.IntRange(min=1),
    envvar='BAGR_WORKERS',
    default=None,
    help='Number of files digested in parallel (default: CPU count + 4, at most 32)',
)
info_option = click.option(
    '-i',
    '--info',
    multiple=True,
    callback=validate_info,
    metavar='LABEL=VALUE',
    help='Tag to add to bag-info.txt; repeatable',
)
date_option = click.option(
    '--bagging-date', type=click.DateTime(CLICK_DATE_FORMATS), default=None, help='Bagging-Date to record')
agent_option = click.option('--software-agent', default=None, help='Bag-Software-Agent to record')


def fail(error: BagError):
    click.echo(f"Error: {error}", err=True)
    raise click.exceptions.Exit(1)


@click.group()
@click.option('-v', '--verbose/--no-verbose', default=False, help='Print more information about the process')
@click.option('-q', '--quiet/--no-quiet', default=False, help='Only print errors')
def cli(verbose: bool, quiet: bool):
    """Create and update BagIt bags."""
    level = logging.ERROR if quiet else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(level=level, format='%(levelname)s %(message)s')


@cli.command()
@algorithm_option('Digest algorithm to use; repeatable (default: sha512)')
@click.option(
    '--exclude-hidden-files/--include-hidden-files',
    default=False,
    help='Leave out files whose names start with a dot. When bagging in place they are DELETED, irreversibly.',
)
@info_option
@date_option
@agent_option
@workers_option
@click.argument('source', required=False, type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.argument('destination', required=False, type=click.Path(file_okay=False, path_type=Path))
def bag(
  algorithms: tuple[str, ...],
  exclude_hidden_files: bool,
  info: tuple[str, ...],
  bagging_date,
  software_agent: Optional[str],
  workers: Optional[int],
  source: Optional[Path],
  destination: Optional[Path],
):
    """Create a bag from SOURCE (default: the current directory).

    Without DESTINATION the bag is created in place; otherwise SOURCE is copied
    into DESTINATION and left unchanged.
    """
    source = source or Path.cwd()
    bag_info = prep_bag_info(info)
    if bagging_date:
        bag_info.add(LABEL_BAGGING_DATE, format_date(bagging_date.date()))
    if software_agent:
        bag_info.add(LABEL_SOFTWARE_AGENT, software_agent)
    try:
        created = create_bag(
            source,
            destination,
            algorithms=algorithms or None,
            bag_info=bag_info,
            exclude_hidden=exclude_hidden_files,
            workers=workers,
        )
    except BagError as e:
        fail(e)
    click.echo(f"Created bag {created.base_dir} ({len(created.payload_files())} payload files)")


@cli.command(name='rebag')
@algorithm_option('Digest algorithm to use; repeatable (default: the algorithms already in use)')
@info_option
@date_option
@agent_option
@workers_option
@click.argument('bag_path', type=click.Path(exists=True, file_okay=False, path_type=Path))
def rebag_command(
  algorithms: tuple[str, ...],
  info: tuple[str, ...],
  bagging_date,
  software_agent: Optional[str],
  workers: Optional[int],
  bag_path: Path,
):
    """Recompute the manifests of the bag at BAG_PATH."""
    extra = BagInfo()
    for option in info:
        extra.add(*parse_info_option(option))
    try:
        result = rebag(
            bag_path,
            algorithms=algorithms or None,
            bag_info=extra,
            bagging_date=format_date(bagging_date.date()) if bagging_date else None,
            software_agent=software_agent,
            workers=workers,
        )
    except BagError as e:
        fail(e)
    if not result.changed:
        click.echo(f"Bag {bag_path} is up to date")
        return
    click.echo(
        f"Updated bag {bag_path}: {len(result.added)} added, "
        f"{len(result.modified)} modified, {len(result.removed)} removed"
    )


if __name__ == "__main__":
    cli()
