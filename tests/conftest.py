from pathlib import Path
import textwrap

import pytest

SF_NAMESPACE_URI = 'http://soap.sforce.com/2006/04/metadata'


def write_metadata(path: Path, root_tag: str, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<{root_tag} xmlns="{SF_NAMESPACE_URI}">\n'
        f'{textwrap.dedent(body).strip()}\n'
        f'</{root_tag}>\n',
        encoding='utf-8',
    )
    return path


@pytest.fixture
def meta_path(tmp_path):
    """A small SFDX source tree with one of each component kind."""
    base = tmp_path / 'force-app' / 'main' / 'default'

    write_metadata(base / 'permissionsets' / 'Reader.permissionset-meta.xml', 'PermissionSet', '''
        <applicationVisibilities>
            <application>Sales</application>
            <visible>true</visible>
        </applicationVisibilities>
        <fieldPermissions>
            <editable>false</editable>
            <field>Account.Rating</field>
            <readable>true</readable>
        </fieldPermissions>
        <label>Account Reader</label>
        <objectPermissions>
            <allowCreate>false</allowCreate>
            <allowDelete>false</allowDelete>
            <allowEdit>false</allowEdit>
            <allowRead>true</allowRead>
            <modifyAllRecords>false</modifyAllRecords>
            <object>Account</object>
            <viewAllRecords>false</viewAllRecords>
        </objectPermissions>
        <tabSettings>
            <tab>standard-Account</tab>
            <visibility>Visible</visibility>
        </tabSettings>
    ''')
    write_metadata(base / 'permissionsets' / 'Editor.permissionset-meta.xml', 'PermissionSet', '''
        <customPermissions>
            <enabled>true</enabled>
            <name>Approve_Discounts</name>
        </customPermissions>
        <fieldPermissions>
            <editable>true</editable>
            <field>Account.Rating</field>
            <readable>true</readable>
        </fieldPermissions>
        <label>Account Editor</label>
        <objectPermissions>
            <allowCreate>false</allowCreate>
            <allowDelete>false</allowDelete>
            <allowEdit>true</allowEdit>
            <allowRead>true</allowRead>
            <modifyAllRecords>false</modifyAllRecords>
            <object>Account</object>
            <viewAllRecords>false</viewAllRecords>
        </objectPermissions>
        <userPermissions>
            <enabled>true</enabled>
            <name>ApiEnabled</name>
        </userPermissions>
        <userPermissions>
            <enabled>true</enabled>
            <name>ExportReport</name>
        </userPermissions>
    ''')
    (base / 'permissionsets' / 'Broken.permissionset-meta.xml').write_text(
        '<PermissionSet><label>Broken</label>', encoding='utf-8'
    )
    write_metadata(base / 'mutingpermissionsets' / 'Sales_Mute.mutingpermissionset-meta.xml', 'MutingPermissionSet', '''
        <customPermissions>
            <enabled>true</enabled>
            <name>Approve_Discounts</name>
        </customPermissions>
        <fieldPermissions>
            <editable>false</editable>
            <field>Account.Rating</field>
            <readable>true</readable>
        </fieldPermissions>
        <label>Sales Mute</label>
    ''')
    write_metadata(base / 'permissionsetgroups' / 'Sales_Group.permissionsetgroup-meta.xml', 'PermissionSetGroup', '''
        <description>Sales reps</description>
        <label>Sales Group</label>
        <mutingPermissionSets>Sales_Mute</mutingPermissionSets>
        <permissionSets>Reader</permissionSets>
        <permissionSets>Editor</permissionSets>
        <status>Updated</status>
    ''')
    write_metadata(base / 'permissionsetgroups' / 'Ghost_Group.permissionsetgroup-meta.xml', 'PermissionSetGroup', '''
        <label>Ghost Group</label>
        <permissionSets>Reader</permissionSets>
        <permissionSets>Missing_Set</permissionSets>
    ''')
    write_metadata(base / 'profiles' / 'Admin.profile-meta.xml', 'Profile', '''
        <custom>false</custom>
        <layoutAssignments>
            <layout>Account-Account Layout</layout>
        </layoutAssignments>
        <layoutAssignments>
            <layout>Account-Partner Layout</layout>
            <recordType>Account.Partner</recordType>
        </layoutAssignments>
        <layoutAssignments>
            <layout>Contact-Contact Layout</layout>
        </layoutAssignments>
        <objectPermissions>
            <allowCreate>true</allowCreate>
            <allowDelete>false</allowDelete>
            <allowEdit>false</allowEdit>
            <allowRead>true</allowRead>
            <modifyAllRecords>false</modifyAllRecords>
            <object>Account</object>
            <viewAllRecords>false</viewAllRecords>
        </objectPermissions>
        <tabVisibilities>
            <tab>standard-Account</tab>
            <visibility>DefaultOn</visibility>
        </tabVisibilities>
        <tabVisibilities>
            <tab>standard-Contact</tab>
            <visibility>Hidden</visibility>
        </tabVisibilities>
        <userLicense>Salesforce</userLicense>
        <userPermissions>
            <enabled>true</enabled>
            <name>ViewSetup</name>
        </userPermissions>
    ''')
    write_metadata(base / 'objects' / 'Account' / 'Account.object-meta.xml', 'CustomObject', '''
        <label>Account</label>
    ''')
    write_metadata(base / 'objects' / 'Account' / 'fields' / 'Rating.field-meta.xml', 'CustomField', '''
        <fullName>Rating</fullName>
        <label>Account Rating</label>
        <type>Picklist</type>
    ''')
    write_metadata(base / 'applications' / 'Sales.app-meta.xml', 'CustomApplication', '''
        <label>Sales Console</label>
    ''')
    return base
