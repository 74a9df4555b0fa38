#!/usr/bin/env python3
"""
Salesforce Permissions Export

Exports the effective access of profiles, permission sets, permission set
groups and users from a retrieved SFDX project into spreadsheet-ready CSV
sheets, one sheet per exported entity.

- Permission set groups are combined from their member permission sets, with
  the group's muting permission set applied on top.
- Users are combined from their profile, their directly assigned permission
  sets and their permission set groups (needs an authenticated sf CLI org).

Usage:
python run_export.py [--project PATH] [-p PROFILES] [-s PERMSETS] [-g GROUPS] [-u USERS]
"""

from functools import partial
from pathlib import Path
import sys

import click
import questionary

from metadata_store import LocalMetadataStore, find_metadata_base
from perms_export import ExportRequest, PermissionsExportBuilder
from tool_utils import (
    NavigationInterrupt,
    check_auth,
    prompt_with_navigation,
    read_config,
    split_names,
    validate_included_components,
)
from user_assignments import query_user_assignments

ALL_CHOICE_VALUE = '[ALL]'


def _select_components(label: str, available: list[str]) -> list[str]:
    """Checkbox prompt over ``available`` with an [ALL] shortcut."""

    if not available:
        return []
    choices = [questionary.Choice(ALL_CHOICE_VALUE, value=ALL_CHOICE_VALUE)] + [
        questionary.Choice(name) for name in available
    ]
    selected = prompt_with_navigation(questionary.checkbox(f"Select {label} to export:", choices=choices))
    if ALL_CHOICE_VALUE in selected:
        return list(available)
    return sorted(name for name in selected if name != ALL_CHOICE_VALUE)


def prompt_for_request(store: LocalMetadataStore) -> ExportRequest:
    """Interactively choose what to export from the components in the project."""

    return ExportRequest(
        profiles=_select_components('profiles', store.list_profiles()),
        permission_sets=_select_components('permission sets', store.list_permission_sets()),
        permission_set_groups=_select_components('permission set groups', store.list_permission_set_groups()),
    )


def _print_summary(results, export_dir: Path) -> None:
    click.echo(click.style("\n--- Export Summary ---", bold=True))
    for result in results:
        label = f"{result.kind.value} {result.name}"
        if result.ok:
            click.echo(click.style(f"✓ {label}", fg='green') + f" -> {result.sheet_path.name}")
        else:
            click.echo(click.style(f"✗ {label}: {result.error}", fg='red'))
    if any(result.ok for result in results):
        click.echo(f"\nSheets saved to: {export_dir}")


@click.command()
@click.option('--project', default='.', help='SFDX project root path.')
@click.option('--metadata', default=None, help='Override metadata folder relative to project root.')
@click.option('-p', '--profiles', default=None, help='Comma-separated profile names.')
@click.option('-s', '--permission-sets', default=None, help='Comma-separated permission set names.')
@click.option('-g', '--permission-set-groups', default=None, help='Comma-separated permission set group names.')
@click.option('-u', '--users', default=None, help='Comma-separated usernames (requires a target org).')
@click.option('-i', '--included-components', default=None,
              help="Comma-separated sections to include (default from config, 'all').")
@click.option('-o', '--output-dir', default=None, help='Folder for the exported sheets.')
@click.option('--target-org', default=None, help='sf CLI alias or username used to look up users.')
@click.option('--config', 'config_path', default=None, type=click.Path(dir_okay=False),
              help='Path to config.ini (defaults to the one next to this script).')
@click.option('--verbose', is_flag=True, help='Show the documents combined for each entity.')
def main(project, metadata, profiles, permission_sets, permission_set_groups, users,
         included_components, output_dir, target_org, config_path, verbose):
    """Export effective Salesforce permissions to spreadsheet sheets."""
    click.echo(click.style("=== Salesforce Permissions Export ===", bold=True, fg='cyan'))

    config = read_config(Path(config_path) if config_path else Path(__file__).parent / 'config.ini')
    components = (
        validate_included_components(split_names(included_components))
        if included_components else config.included_components
    )
    target_org = target_org or config.target_org

    try:
        project_root = Path(project).resolve(strict=True)
    except FileNotFoundError:
        raise click.ClickException(f"Project directory not found: {Path(project).resolve()}")
    meta_override_path = project_root / metadata if metadata else None
    meta_base = find_metadata_base(project_root, str(meta_override_path) if meta_override_path else None)
    store = LocalMetadataStore(meta_base)
    click.echo(f"Using metadata folder: {meta_base}")

    request = ExportRequest(
        profiles=split_names(profiles),
        permission_sets=split_names(permission_sets),
        permission_set_groups=split_names(permission_set_groups),
        users=split_names(users),
    )
    if request.is_empty():
        try:
            request = prompt_for_request(store)
        except NavigationInterrupt:
            click.echo("Export cancelled.")
            return
    if request.is_empty():
        raise click.ClickException(
            'Profile names, permission set names, permission set group names, or usernames must be provided.'
        )

    user_source = None
    if request.users:
        if not target_org:
            raise click.ClickException("Exporting users requires --target-org or SalesforceOrgs.target_org in config.ini.")
        if not check_auth(target_org):
            raise click.ClickException(f"Not authenticated to org with alias '{target_org}'.")
        user_source = partial(
            query_user_assignments, target_org=target_org, chunk_size=config.query_chunk_size
        )

    builder = PermissionsExportBuilder(store, components, verbose=verbose, user_source=user_source)
    click.echo(click.style("\nBuilding permissions sheets...", bold=True))
    results = builder.build_all(request)
    export_dir = builder.write_sheets(results, project_root / (output_dir or config.output_dir))
    _print_summary(results, export_dir)

    if not all(result.ok for result in results):
        sys.exit(1)


if __name__ == '__main__':
    main()
