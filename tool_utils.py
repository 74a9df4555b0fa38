"""Utility helpers shared by the permissions export tooling."""

import configparser
import datetime
import json
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

import click

DEFAULT_OUTPUT_DIR = 'Permission Exports'
DEFAULT_QUERY_CHUNK_SIZE = 200
ALL_COMPONENTS = 'all'

# Section keys accepted by --included-components.
COMPONENT_KEYS = (
    'apps',
    'apex',
    'cmt',
    'custompermissions',
    'customsettings',
    'flows',
    'layouts',
    'objects',
    'fields',
    'pages',
    'recordtypes',
    'tabs',
    'userpermissions',
)


class NavigationInterrupt(Exception):
    """Raised when the user cancels an interactive prompt."""


def prompt_with_navigation(prompt):
    """Execute a questionary prompt and translate cancellations into navigation."""

    try:
        answer = prompt.ask()
    except KeyboardInterrupt:
        raise NavigationInterrupt() from None

    if answer is None:
        raise NavigationInterrupt()

    return answer


@dataclass
class CommandResult:
    """Outcome of executing a subprocess command."""

    success: bool
    returncode: int | None
    stdout: str | None
    duration_seconds: float


@dataclass
class ExportSettings:
    """Validated configuration values for a permissions export."""

    target_org: str | None = None
    output_dir: str = DEFAULT_OUTPUT_DIR
    included_components: list[str] = field(default_factory=lambda: [ALL_COMPONENTS])
    query_chunk_size: int = DEFAULT_QUERY_CHUNK_SIZE


def split_names(value: str | None) -> list[str]:
    """Split a comma-separated option value, dropping blanks and duplicates."""

    if not value:
        return []
    return list(dict.fromkeys(part.strip() for part in value.split(',') if part.strip()))


def validate_included_components(components: list[str]) -> list[str]:
    """Normalise component keys; 'all' anywhere selects every section."""

    normalised = [c.strip().lower() for c in components if c.strip()]
    if not normalised or ALL_COMPONENTS in normalised:
        return [ALL_COMPONENTS]
    unknown = [c for c in normalised if c not in COMPONENT_KEYS]
    if unknown:
        raise click.ClickException(
            f"Unknown component(s): {', '.join(unknown)}. Valid values: {ALL_COMPONENTS}, {', '.join(COMPONENT_KEYS)}."
        )
    return list(dict.fromkeys(normalised))


def read_config(config_path: Path) -> ExportSettings:
    """Read INI configuration values; a missing file gives the defaults."""

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding='utf-8')

    target_org = parser.get('SalesforceOrgs', 'target_org', fallback='').strip() or None
    output_dir = parser.get('ToolOptions', 'output_dir', fallback=DEFAULT_OUTPUT_DIR).strip() or DEFAULT_OUTPUT_DIR
    included_components = validate_included_components(
        split_names(parser.get('ToolOptions', 'included_components', fallback=ALL_COMPONENTS))
    )

    chunk_size_raw = parser.get('ToolOptions', 'query_chunk_size', fallback=str(DEFAULT_QUERY_CHUNK_SIZE)).strip()
    try:
        query_chunk_size = int(chunk_size_raw)
    except ValueError:
        raise click.ClickException(
            f"Invalid ToolOptions.query_chunk_size '{chunk_size_raw}': expected a positive integer."
        ) from None
    if query_chunk_size <= 0:
        raise click.ClickException(
            f"Invalid ToolOptions.query_chunk_size '{chunk_size_raw}': expected a positive integer."
        )

    return ExportSettings(
        target_org=target_org,
        output_dir=output_dir,
        included_components=included_components,
        query_chunk_size=query_chunk_size,
    )


def run_command(
    command: list[str],
    cwd: Path = None,
    capture_output: bool = True,
    check: bool = False,
) -> CommandResult:
    """Run a command and report its status."""

    command_str = subprocess.list2cmdline(command)
    start = datetime.datetime.now()
    if not capture_output:
        click.echo(
            click.style(
                f"\n[{start:%H:%M:%S}] > Executing: {command_str}",
                fg='yellow',
            )
        )

    try:
        result = subprocess.run(
            command,
            capture_output=capture_output,
            text=True,
            encoding='utf-8',
            errors='replace',
            check=check,
            cwd=cwd,
        )
    except subprocess.CalledProcessError as e:
        duration = (datetime.datetime.now() - start).total_seconds()
        click.echo(
            click.style(
                f"✗ Command failed after {duration:.2f}s (exit {e.returncode}).",
                fg='red',
            )
        )
        return CommandResult(False, e.returncode, e.stdout, duration)
    except FileNotFoundError:
        duration = (datetime.datetime.now() - start).total_seconds()
        click.echo(click.style(f"✗ Command not found: {command[0]}", fg='red'))
        return CommandResult(False, None, None, duration)

    duration = (datetime.datetime.now() - start).total_seconds()
    success = result.returncode == 0
    if not capture_output:
        click.echo(
            click.style(f"✓ Command successful. (took {duration:.2f}s)", fg='green')
            if success
            else click.style(
                f"✗ Command returned code {result.returncode} (took {duration:.2f}s)",
                fg='red',
            )
        )
    return CommandResult(success, result.returncode, result.stdout, duration)


def check_auth(alias: str, announce: bool = True, runner=run_command) -> bool:
    """Return True when the provided alias has an active Salesforce session."""
    if announce:
        click.echo(f"Checking for existing authentication for alias: '{alias}'...")

    result = runner(['sf', 'org', 'list', '--json'])
    output = result.stdout or ''
    if output:
        try:
            org_list = json.loads(output)
        except json.JSONDecodeError as exc:
            click.echo(
                click.style(
                    f"Unable to parse Salesforce org list output: {exc}", fg='red'
                )
            )
            org_list = {}
        all_orgs = (
            org_list.get('result', {}).get('nonScratchOrgs', [])
            + org_list.get('result', {}).get('scratchOrgs', [])
        )
        for org in all_orgs:
            aliases = []
            alias_value = org.get('alias')
            if alias_value:
                aliases.append(alias_value)
            aliases.extend(org.get('aliases', []))
            if alias in aliases or org.get('username') == alias:
                if announce:
                    click.echo(click.style("✓ Found active session.", fg='green'))
                return True

    if announce:
        click.echo(click.style("No active session found. Log in with 'sf org login web' first.", fg='yellow'))
    return False


def chunk_list(items: list, chunk_size: int) -> list[list]:
    """Split ``items`` into consecutive chunks of at most ``chunk_size``."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [items[i:i + chunk_size] for i in range(0, len(items), chunk_size)]


def build_where_in_value(values: list[str]) -> str:
    """Quote values for a SOQL ``IN (...)`` clause."""

    if not values:
        return ''
    return ','.join("'" + value.replace('\\', '\\\\').replace("'", "\\'") + "'" for value in values)
