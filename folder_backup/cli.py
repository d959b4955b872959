"""
Command line interface for folder-backup.

Meant to be started by a scheduler (cron, systemd timer). Running two
instances against the same WORK_DIR at once is not supported: both would
write the same archive files in tmp/.
"""

import sys
import logging
from typing import Optional

import click
from dotenv import load_dotenv

from folder_backup import configure_logging
from folder_backup.config import Config, load_config, ConfigurationError
from folder_backup.notify import TelegramNotifier
from folder_backup.backup.executor import execute_backup


logger = logging.getLogger(__name__)


def _load_environment(env_file: Optional[str]):
    if env_file:
        load_dotenv(env_file, override=True)
    else:
        load_dotenv()


@click.group()
def cli():
    """folder-backup - archive folders and upload them to a remote server"""
    pass


@cli.command(name='run')
@click.option('--env-file', type=click.Path(exists=True, dir_okay=False), help='Load settings from this .env file')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose console logging')
def run_backup(env_file: Optional[str], verbose: bool):
    """Run one backup of every folder in SOURCE_DIR"""
    _load_environment(env_file)

    try:
        config = load_config()
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        # Base settings still carry the Telegram credentials
        TelegramNotifier.from_config(Config()).notify(f"Configuration check failed: {e}", is_error=True)
        sys.exit(1)

    if verbose:
        config.LOGGING = True

    configure_logging(config)
    sys.exit(execute_backup(config))


@cli.group()
def config():
    """Configuration commands"""
    pass


@config.command(name='show')
@click.option('--env-file', type=click.Path(exists=True, dir_okay=False), help='Load settings from this .env file')
def config_show(env_file: Optional[str]):
    """Show current configuration (secrets masked)"""
    _load_environment(env_file)

    try:
        current = load_config()
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    click.echo("Current Configuration:")
    for key, value in current.as_dict().items():
        click.echo(f"  {key}: {value if value is not None else 'Not configured'}")


@config.command(name='validate')
@click.option('--env-file', type=click.Path(exists=True, dir_okay=False), help='Load settings from this .env file')
def config_validate(env_file: Optional[str]):
    """Validate configuration"""
    _load_environment(env_file)

    try:
        load_config().validate()
    except ConfigurationError as e:
        click.echo(f"Configuration invalid: {e}", err=True)
        sys.exit(1)

    click.echo("Configuration is valid")


def main():
    cli()


if __name__ == '__main__':
    main()
