import csv
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parent.parent))

from metadata_store import ObjectSchema
from perms_models import AccessDocument, DocumentKind, ObjectPermission
from perms_report import (
    build_sheet_rows,
    format_object_permissions,
    make_sheet_name,
    write_sheet_csv,
)

SCHEMAS = {
    'Account': ObjectSchema(api_name='Account', label='Account', fields={'Rating': 'Account Rating'}),
}


def _document(kind=DocumentKind.PERMISSION_SET, **metadata) -> AccessDocument:
    return AccessDocument.from_metadata(kind, {'fullName': 'Sales_Rep', 'label': 'Sales Rep', **metadata})


def _object(obj: str, read=False, edit=False) -> dict:
    return {'object': obj, 'allowRead': str(read).lower(), 'allowEdit': str(edit).lower()}


def test_sheet_rows_render_each_section_in_order():
    document = _document(
        applicationVisibilities=[
            {'application': 'Sales', 'visible': 'true', 'default': 'true'},
            {'application': 'Service', 'visible': 'false'},
        ],
        objectPermissions=[_object('Account', read=True, edit=True), _object('Lead')],
        fieldPermissions=[
            {'field': 'Account.Rating', 'readable': 'true', 'editable': 'true'},
            {'field': 'Lead.Status', 'readable': 'true', 'editable': 'false'},
        ],
        tabSettings={'tab': 'standard-Account', 'visibility': 'Visible'},
        userPermissions=[
            {'name': 'ViewSetup', 'enabled': 'false'},
            {'name': 'ApiEnabled', 'enabled': 'true'},
        ],
    )

    rows = build_sheet_rows(document, SCHEMAS.get, {'Sales': 'Sales Console'})

    assert rows == [
        ['Permission Set: Sales Rep'],
        [''],
        ['Assigned Apps'],
        ['Label', 'API Name', 'Default'],
        ['Sales Console', 'Sales', 'true'],
        [''],
        ['Object Permissions'],
        ['Label', 'API Name', 'Permission'],
        ['Account', 'Account', 'Read/Edit'],
        [''],
        ['Field Level Permissions'],
        ['Object Label', 'Object API Name', 'Field Label', 'Field API Name', 'Permission'],
        ['Account', 'Account', 'Account Rating', 'Rating', 'Edit'],
        ['Lead', 'Lead', 'Status', 'Status', 'Read'],
        [''],
        ['Tab Visibilities'],
        ['Name', 'Visibility'],
        ['standard-Account', 'Visible'],
        [''],
        ['System Permissions'],
        ['Permission', 'Access'],
        ['ApiEnabled', 'true'],
        [''],
    ]


def test_included_components_limit_sections():
    document = _document(
        objectPermissions=_object('Account', read=True),
        userPermissions={'name': 'ApiEnabled', 'enabled': 'true'},
    )

    rows = build_sheet_rows(document, SCHEMAS.get, included_components=['userpermissions'])

    assert rows == [
        ['Permission Set: Sales Rep'],
        [''],
        ['System Permissions'],
        ['Permission', 'Access'],
        ['ApiEnabled', 'true'],
        [''],
    ]


def test_enabled_sections_are_sorted_case_insensitively():
    document = _document(
        classAccesses=[
            {'apexClass': 'zeta', 'enabled': 'true'},
            {'apexClass': 'Alpha', 'enabled': 'true'},
            {'apexClass': 'beta', 'enabled': 'false'},
        ],
    )

    rows = build_sheet_rows(document, SCHEMAS.get, included_components=['apex'])

    assert rows[2:] == [
        ['Apex Class Accesses'],
        ['Apex Class', 'Enabled'],
        ['Alpha', 'true'],
        ['zeta', 'true'],
        [''],
    ]


def test_fields_and_layouts_follow_object_permission_records_not_read_access():
    document = _document(
        DocumentKind.PROFILE,
        objectPermissions=_object('Account'),
        fieldPermissions=[
            {'field': 'Account.Rating', 'readable': 'true', 'editable': 'false'},
            {'field': 'Contact.Email', 'readable': 'true', 'editable': 'true'},
        ],
        layoutAssignments=[{'layout': 'Account-Account Layout'}, {'layout': 'Contact-Contact Layout'}],
    )

    rows = build_sheet_rows(document, SCHEMAS.get, included_components=['layouts', 'fields'])

    assert rows == [
        ['Profile: Sales Rep'],
        [''],
        ['Page Layout Assignments'],
        ['Object Label', 'Object API Name', 'Record Type', 'Page Layout Assignment'],
        ['Account', 'Account', 'Master', 'Account Layout'],
        [''],
        ['Field Level Permissions'],
        ['Object Label', 'Object API Name', 'Field Label', 'Field API Name', 'Permission'],
        ['Account', 'Account', 'Account Rating', 'Rating', 'Read'],
        [''],
    ]


def test_profile_tabs_render_in_profile_vocabulary():
    tabs = [
        {'tab': 'standard-Account', 'visibility': 'DefaultOn'},
        {'tab': 'standard-Contact', 'visibility': 'Hidden'},
        {'tab': 'standard-Lead', 'visibility': 'DefaultOff'},
    ]
    profile = _document(DocumentKind.PROFILE, tabVisibilities=tabs)
    permset = _document(tabSettings={'tab': 'standard-Account', 'visibility': 'Visible'})

    assert build_sheet_rows(profile, SCHEMAS.get, included_components=['tabs'])[2:] == [
        ['Tab Visibilities'],
        ['Name', 'Visibility'],
        ['standard-Account', 'DefaultOn'],
        ['standard-Contact', 'Hidden'],
        ['standard-Lead', 'DefaultOff'],
        [''],
    ]
    assert build_sheet_rows(permset, SCHEMAS.get, included_components=['tabs'])[4] == ['standard-Account', 'Visible']


def test_layouts_only_list_objects_with_object_permissions():
    document = _document(
        DocumentKind.PROFILE,
        objectPermissions=_object('Account', read=True),
        layoutAssignments=[
            {'layout': 'Account-Partner Layout', 'recordType': 'Account.Partner'},
            {'layout': 'Account-Account Layout'},
            {'layout': 'Contact-Contact Layout'},
        ],
    )

    rows = build_sheet_rows(document, SCHEMAS.get, included_components=['layouts'])

    assert rows == [
        ['Profile: Sales Rep'],
        [''],
        ['Page Layout Assignments'],
        ['Object Label', 'Object API Name', 'Record Type', 'Page Layout Assignment'],
        ['Account', 'Account', 'Master', 'Account Layout'],
        ['Account', 'Account', 'Partner', 'Partner Layout'],
        [''],
    ]


def test_empty_document_renders_title_only():
    document = AccessDocument.empty(DocumentKind.PERMISSION_SET_GROUP, 'Empty_Group', 'Empty Group')

    assert build_sheet_rows(document, SCHEMAS.get) == [['Permission Set Group: Empty Group'], ['']]


def test_format_object_permissions():
    op = ObjectPermission(object_name='Case', allow_read=True, allow_delete=True, modify_all_records=True)

    assert format_object_permissions(op) == 'Read/Delete/Modify All'
    assert format_object_permissions(ObjectPermission(object_name='Case')) == ''


def test_make_sheet_name_sanitises_truncates_and_dedupes():
    used: set[str] = set()

    assert make_sheet_name('Sales: Reps/West', used) == 'Sales_ Reps_West'
    long_name = make_sheet_name('A' * 40, used)
    assert long_name == 'A' * 31
    assert make_sheet_name('a' * 40, used) == 'a' * 27 + ' (2)'
    assert make_sheet_name('', used) == 'Sheet'


def test_write_sheet_csv(tmp_path):
    path = write_sheet_csv(tmp_path / 'out' / 'Sales Rep.csv', [['Title'], [''], ['a', 'b, c']])

    with open(path, newline='', encoding='utf-8') as cf:
        assert list(csv.reader(cf)) == [['Title'], [''], ['a', 'b, c']]
