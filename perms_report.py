"""Render effective access documents as spreadsheet rows and CSV sheets."""

import csv
import re
from pathlib import Path
from typing import Callable

from perms_models import (
    APPLICATION_VISIBILITIES,
    CLASS_ACCESSES,
    CUSTOM_METADATA_TYPE_ACCESSES,
    CUSTOM_PERMISSIONS,
    CUSTOM_SETTING_ACCESSES,
    FIELD_PERMISSIONS,
    FLOW_ACCESSES,
    OBJECT_PERMISSIONS,
    PAGE_ACCESSES,
    RECORD_TYPE_VISIBILITIES,
    TAB_SETTINGS,
    USER_PERMISSIONS,
    AccessDocument,
    DocumentKind,
    TabVisibility,
)
from tool_utils import ALL_COMPONENTS

MAX_SHEET_NAME_LENGTH = 31
INVALID_SHEET_CHARS = re.compile(r'[\\/?*\[\]:<>|"]')

KIND_TITLES = {
    DocumentKind.PROFILE: 'Profile',
    DocumentKind.PERMISSION_SET: 'Permission Set',
    DocumentKind.MUTING_PERMISSION_SET: 'Muting Permission Set',
    DocumentKind.PERMISSION_SET_GROUP: 'Permission Set Group',
    DocumentKind.USER: 'User',
}

# (attribute, display name) in display order
OBJECT_PERM_LABELS = (
    ('allow_read', 'Read'),
    ('allow_create', 'Create'),
    ('allow_edit', 'Edit'),
    ('allow_delete', 'Delete'),
    ('view_all_records', 'View All'),
    ('modify_all_records', 'Modify All'),
)

# Profile sheets show tabs in the profile's own vocabulary.
PROFILE_TAB_LABELS = {
    TabVisibility.VISIBLE: 'DefaultOn',
    TabVisibility.AVAILABLE: 'DefaultOff',
    TabVisibility.NONE: 'Hidden',
}

SchemaLookup = Callable[[str], object]


def _flag(value: bool) -> str:
    return 'true' if value else 'false'


def _sorted_rows(rows: list[list[str]], *columns: int) -> list[list[str]]:
    return sorted(rows, key=lambda row: tuple((row[c] or '').lower() for c in columns))


def _section(title: str, subheader: list[str], rows: list[list[str]]) -> list[list[str]]:
    if not rows:
        return []
    return [[title], subheader, *rows, ['']]


def _object_label(schema_lookup: SchemaLookup, object_name: str) -> str:
    schema = schema_lookup(object_name)
    return schema.label if schema is not None else object_name


def _field_label(schema_lookup: SchemaLookup, object_name: str, field_name: str) -> str:
    schema = schema_lookup(object_name)
    return schema.field_label(field_name) if schema is not None else field_name


def _enabled_section(document: AccessDocument, category, title: str, name_header: str) -> list[list[str]]:
    rows = [
        [category.key_of(record), 'true']
        for record in document.records(category)
        if record.enabled
    ]
    return _section(title, [name_header, 'Enabled'], _sorted_rows(rows, 0))


def _apps_section(document: AccessDocument, app_labels: dict[str, str]) -> list[list[str]]:
    rows = [
        [app_labels.get(av.application, av.application), av.application, _flag(av.default)]
        for av in document.records(APPLICATION_VISIBILITIES)
        if av.visible
    ]
    return _section('Assigned Apps', ['Label', 'API Name', 'Default'], _sorted_rows(rows, 0))


def _permitted_objects(document: AccessDocument) -> set[str]:
    """Objects the document carries an object permission record for, whatever its flags."""
    return {op.object_name for op in document.records(OBJECT_PERMISSIONS)}


def _layouts_section(document: AccessDocument, schema_lookup: SchemaLookup) -> list[list[str]]:
    if not document.layout_assignments:
        return []
    permitted = _permitted_objects(document)
    rows = []
    for pla in document.layout_assignments:
        layout_object, _, layout_name = pla.layout.partition('-')
        if layout_object not in permitted:
            continue
        record_type = 'Master'
        if pla.record_type:
            record_type = pla.record_type.split('.', 1)[-1]
        rows.append([_object_label(schema_lookup, layout_object), layout_object, record_type, layout_name])
    return _section(
        'Page Layout Assignments',
        ['Object Label', 'Object API Name', 'Record Type', 'Page Layout Assignment'],
        _sorted_rows(rows, 0, 2),
    )


def format_object_permissions(op) -> str:
    """Slash-joined list of granted object permissions, e.g. ``Read/Edit``."""
    return '/'.join(label for attr, label in OBJECT_PERM_LABELS if getattr(op, attr))


def _objects_section(document: AccessDocument, schema_lookup: SchemaLookup) -> list[list[str]]:
    rows = []
    for op in document.records(OBJECT_PERMISSIONS):
        permissions = format_object_permissions(op)
        if permissions:
            rows.append([_object_label(schema_lookup, op.object_name), op.object_name, permissions])
    return _section('Object Permissions', ['Label', 'API Name', 'Permission'], _sorted_rows(rows, 0, 1))


def _fields_section(document: AccessDocument, schema_lookup: SchemaLookup) -> list[list[str]]:
    permitted = _permitted_objects(document)
    rows = []
    for fp in document.records(FIELD_PERMISSIONS):
        object_name, _, field_name = fp.field_name.partition('.')
        if object_name not in permitted:
            continue
        if fp.editable:
            permission = 'Edit'
        elif fp.readable:
            permission = 'Read'
        else:
            continue
        rows.append([
            _object_label(schema_lookup, object_name),
            object_name,
            _field_label(schema_lookup, object_name, field_name),
            field_name,
            permission,
        ])
    return _section(
        'Field Level Permissions',
        ['Object Label', 'Object API Name', 'Field Label', 'Field API Name', 'Permission'],
        _sorted_rows(rows, 0, 3),
    )


def _record_types_section(document: AccessDocument) -> list[list[str]]:
    rows = [[rtv.record_type, _flag(rtv.visible)] for rtv in document.records(RECORD_TYPE_VISIBILITIES)]
    return _section('Record Type Visibilities', ['Name', 'Visibility'], _sorted_rows(rows, 0))


def _tabs_section(document: AccessDocument) -> list[list[str]]:
    labels = PROFILE_TAB_LABELS if document.kind is DocumentKind.PROFILE else {}
    rows = [[ts.tab, labels.get(ts.visibility, ts.visibility.value)] for ts in document.records(TAB_SETTINGS)]
    return _section('Tab Visibilities', ['Name', 'Visibility'], _sorted_rows(rows, 0))


def _user_permissions_section(document: AccessDocument) -> list[list[str]]:
    rows = [[up.name, 'true'] for up in document.records(USER_PERMISSIONS) if up.enabled]
    return _section('System Permissions', ['Permission', 'Access'], _sorted_rows(rows, 0))


def sheet_title(document: AccessDocument) -> str:
    return f"{KIND_TITLES[document.kind]}: {document.display_name}"


def build_sheet_rows(
    document: AccessDocument,
    schema_lookup: SchemaLookup,
    app_labels: dict[str, str] | None = None,
    included_components: list[str] | None = None,
) -> list[list[str]]:
    """Rows of one report sheet, section by section.

    ``included_components`` restricts the sections by key (see
    ``tool_utils.COMPONENT_KEYS``); ``['all']`` or None renders everything.
    """
    included = set(included_components or [ALL_COMPONENTS])

    def wanted(key: str) -> bool:
        return ALL_COMPONENTS in included or key in included

    sections = [
        ('apps', lambda: _apps_section(document, app_labels or {})),
        ('apex', lambda: _enabled_section(document, CLASS_ACCESSES, 'Apex Class Accesses', 'Apex Class')),
        ('cmt', lambda: _enabled_section(document, CUSTOM_METADATA_TYPE_ACCESSES, 'Custom Metadata Type Accesses', 'Name')),
        ('custompermissions', lambda: _enabled_section(document, CUSTOM_PERMISSIONS, 'Custom Permissions', 'Name')),
        ('customsettings', lambda: _enabled_section(document, CUSTOM_SETTING_ACCESSES, 'Custom Setting Accesses', 'Name')),
        ('flows', lambda: _enabled_section(document, FLOW_ACCESSES, 'Flow Accesses', 'Name')),
        ('layouts', lambda: _layouts_section(document, schema_lookup)),
        ('objects', lambda: _objects_section(document, schema_lookup)),
        ('fields', lambda: _fields_section(document, schema_lookup)),
        ('pages', lambda: _enabled_section(document, PAGE_ACCESSES, 'Visualforce Page Accesses', 'Name')),
        ('recordtypes', lambda: _record_types_section(document)),
        ('tabs', lambda: _tabs_section(document)),
        ('userpermissions', lambda: _user_permissions_section(document)),
    ]

    rows: list[list[str]] = [[sheet_title(document)], ['']]
    for key, render in sections:
        if wanted(key):
            rows.extend(render())
    return rows


def make_sheet_name(name: str, used_names: set[str]) -> str:
    """Sanitised, length-limited sheet name unique within ``used_names``.

    The chosen name is added to ``used_names``.
    """
    base = INVALID_SHEET_CHARS.sub('_', name).strip().strip('.') or 'Sheet'
    base = base[:MAX_SHEET_NAME_LENGTH]
    candidate = base
    counter = 2
    while candidate.lower() in used_names:
        suffix = f" ({counter})"
        candidate = base[:MAX_SHEET_NAME_LENGTH - len(suffix)] + suffix
        counter += 1
    used_names.add(candidate.lower())
    return candidate


def write_sheet_csv(path: Path, rows: list[list[str]]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', newline='', encoding='utf-8') as cf:
        writer = csv.writer(cf)
        writer.writerows(rows)
    return path
