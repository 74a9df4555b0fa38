"""Resolve users to their profile and permission assignments via the sf CLI."""

import json
from dataclasses import dataclass, field

from tool_utils import build_where_in_value, chunk_list, run_command

USER_QUERY = 'SELECT Id, Username, Name, Profile.Name FROM User WHERE Username IN ({names}) ORDER BY Username ASC'
ASSIGNMENT_QUERY = (
    'SELECT Assignee.Username, PermissionSet.Name, PermissionSet.IsOwnedByProfile, '
    'PermissionSetGroup.DeveloperName FROM PermissionSetAssignment '
    'WHERE Assignee.Username IN ({names})'
)


class OrgQueryError(RuntimeError):
    """Raised when a query against the org fails."""


@dataclass
class UserAssignment:
    """A user's profile plus directly and group-assigned permissions."""

    username: str
    name: str
    profile_name: str | None
    permission_sets: list[str] = field(default_factory=list)
    permission_set_groups: list[str] = field(default_factory=list)


def query_records(soql: str, target_org: str, runner=run_command) -> list[dict]:
    """Run a SOQL query with ``sf data query`` and return its records."""

    result = runner(['sf', 'data', 'query', '--query', soql, '--target-org', target_org, '--json'])
    if not result.stdout:
        raise OrgQueryError(f"No output from sf data query (exit {result.returncode}).")
    try:
        payload = json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        raise OrgQueryError(f"Unable to parse sf data query output: {exc}") from exc
    if payload.get('status', 0) != 0:
        raise OrgQueryError(payload.get('message') or f"sf data query failed with status {payload.get('status')}.")
    return (payload.get('result') or {}).get('records') or []


def _nested(record: dict, *path: str):
    value = record
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def parse_user_assignments(user_records: list[dict], assignment_records: list[dict]) -> dict[str, UserAssignment]:
    """Group query records by username.

    Profile-owned permission sets are skipped since the profile document
    already carries them; group assignments are recorded by group name.
    """
    users: dict[str, UserAssignment] = {}
    for rec in user_records:
        username = rec.get('Username')
        if not username:
            continue
        users[username] = UserAssignment(
            username=username,
            name=rec.get('Name') or username,
            profile_name=_nested(rec, 'Profile', 'Name'),
        )

    for rec in assignment_records:
        user = users.get(_nested(rec, 'Assignee', 'Username'))
        if user is None:
            continue
        group_name = _nested(rec, 'PermissionSetGroup', 'DeveloperName')
        if group_name:
            if group_name not in user.permission_set_groups:
                user.permission_set_groups.append(group_name)
            continue
        if _nested(rec, 'PermissionSet', 'IsOwnedByProfile'):
            continue
        ps_name = _nested(rec, 'PermissionSet', 'Name')
        if ps_name and ps_name not in user.permission_sets:
            user.permission_sets.append(ps_name)

    for user in users.values():
        user.permission_sets.sort()
        user.permission_set_groups.sort()
    return users


def query_user_assignments(
    usernames: list[str],
    target_org: str,
    chunk_size: int,
    runner=run_command,
) -> dict[str, UserAssignment]:
    """Look up users and their assignments, ``chunk_size`` names per query."""

    user_records: list[dict] = []
    assignment_records: list[dict] = []
    for chunk in chunk_list(list(usernames), chunk_size):
        names = build_where_in_value(chunk)
        user_records.extend(query_records(USER_QUERY.format(names=names), target_org, runner))
        assignment_records.extend(query_records(ASSIGNMENT_QUERY.format(names=names), target_org, runner))
    return parse_user_assignments(user_records, assignment_records)
