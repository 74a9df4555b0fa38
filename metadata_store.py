"""Local metadata store backed by a retrieved SFDX project.

Profiles, permission sets, muting permission sets and permission set groups
are read from their ``*-meta.xml`` files and converted to the dictionary shape
the Metadata API returns, then into typed ``AccessDocument`` objects.
"""

from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote
import xml.etree.ElementTree as ET

import click

from perms_models import AccessDocument, DocumentKind, ValidationError, get_metadata_prop_as_list

# --- Constants ---
SF_NAMESPACE_URI = 'http://soap.sforce.com/2006/04/metadata'
NS = {'sf': SF_NAMESPACE_URI}

PROFILE_SUFFIX = '.profile-meta.xml'
PERMISSIONSET_SUFFIX = '.permissionset-meta.xml'
MUTINGPERMISSIONSET_SUFFIX = '.mutingpermissionset-meta.xml'
PERMISSIONSETGROUP_SUFFIX = '.permissionsetgroup-meta.xml'
OBJECT_META_SUFFIX = '.object-meta.xml'
FIELD_META_SUFFIX = '.field-meta.xml'
APP_META_SUFFIX = '.app-meta.xml'

# folder, source-format suffix, MDAPI suffix
COMPONENT_LOCATIONS = {
    DocumentKind.PROFILE: ('profiles', PROFILE_SUFFIX, '.profile'),
    DocumentKind.PERMISSION_SET: ('permissionsets', PERMISSIONSET_SUFFIX, '.permissionset'),
    DocumentKind.MUTING_PERMISSION_SET: ('mutingpermissionsets', MUTINGPERMISSIONSET_SUFFIX, '.mutingpermissionset'),
    DocumentKind.PERMISSION_SET_GROUP: ('permissionsetgroups', PERMISSIONSETGROUP_SUFFIX, '.permissionsetgroup'),
}

# Org profile names whose metadata files use a different name.
STANDARD_PROFILE_FILE_NAMES = {
    'System Administrator': 'Admin',
    'Standard User': 'Standard',
    'Standard Platform User': 'StandardAul',
    'Contract Manager': 'ContractManager',
    'Marketing User': 'MarketingProfile',
    'Read Only': 'ReadOnly',
    'Solution Manager': 'SolutionManager',
    'Chatter Free User': 'Chatter Free User',
    'Customer Community User': 'Customer Community User',
    'Partner Community User': 'Partner Community User',
}


class MetadataNotFoundError(LookupError):
    """Raised when a named component does not exist in the project."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} '{name}' was not found in the project metadata.")


class MetadataParseError(ValueError):
    """Raised when a metadata file cannot be parsed."""


@dataclass(frozen=True)
class PermissionSetGroupDefinition:
    """Member and muting permission set names of a permission set group."""

    full_name: str
    label: str
    permission_sets: tuple[str, ...] = ()
    muting_permission_set: str | None = None


@dataclass(frozen=True)
class ObjectSchema:
    """Labels of an object and its fields."""

    api_name: str
    label: str
    fields: dict[str, str] = field(default_factory=dict)

    def field_label(self, field_api_name: str) -> str:
        return self.fields.get(field_api_name, field_api_name)


def find_metadata_base(root: Path, override: str = None) -> Path:
    """Locate the folder holding profiles and/or permission sets."""

    def _is_metadata_base(path: Path) -> bool:
        return (path / 'profiles').is_dir() or (path / 'permissionsets').is_dir()

    if override:
        base = Path(override)
        if _is_metadata_base(base):
            return base.resolve()
        raise click.ClickException(
            f"Invalid metadata path: {base}. 'profiles' or 'permissionsets' folder missing."
        )
    default_paths = [root / 'force-app' / 'main' / 'default', root / 'mdapioutput', root / 'src']
    for default in default_paths:
        if _is_metadata_base(default):
            return default.resolve()
    for folder_name in ('permissionsets', 'profiles'):
        for candidate in root.rglob(folder_name):
            if candidate.is_dir():
                return candidate.parent.resolve()
    raise click.ClickException(
        "Metadata folder not found. Ensure the project has a 'profiles' or 'permissionsets' folder, or use --metadata."
    )


def _local_name(tag: str) -> str:
    return tag.split('}')[-1] if '}' in tag else tag


def xml_to_metadata(element: ET.Element) -> dict:
    """Convert a metadata element to the Metadata API's dictionary shape.

    A repeated child becomes a list, a lone child stays unwrapped, and a leaf
    is reduced to its stripped text.
    """
    result: dict = {}
    for child in element:
        tag = _local_name(child.tag)
        value = xml_to_metadata(child) if len(child) else (child.text or '').strip()
        if tag not in result:
            result[tag] = value
        elif isinstance(result[tag], list):
            result[tag].append(value)
        else:
            result[tag] = [result[tag], value]
    return result


def load_metadata_file(path: Path) -> dict:
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        raise MetadataParseError(f"Error parsing XML {path}: {e}") from e
    except OSError as e:
        raise MetadataParseError(f"Error reading {path}: {e}") from e
    return xml_to_metadata(root)


def _list_metadata_components(meta_path: Path, component_folder: str, suffix: str) -> list[str]:
    comp_path = meta_path / component_folder
    if not comp_path.is_dir():
        return []
    return sorted(p.name[:-len(suffix)] for p in comp_path.glob(f'*{suffix}'))


def _name_candidates(kind: DocumentKind, name: str) -> list[str]:
    candidates = [name]
    if kind is DocumentKind.PROFILE and name in STANDARD_PROFILE_FILE_NAMES:
        candidates.append(STANDARD_PROFILE_FILE_NAMES[name])
    # Retrieved file names percent-encode characters such as ':' and '('.
    candidates.append(quote(name, safe=" -_.'"))
    return list(dict.fromkeys(candidates))


class LocalMetadataStore:
    """Resolves component names to documents from an SFDX source tree."""

    def __init__(self, meta_path: Path):
        self.meta_path = Path(meta_path)
        self._documents: dict[tuple[DocumentKind, str], AccessDocument] = {}
        self._schemas: dict[str, ObjectSchema | None] = {}
        self._app_labels: dict[str, str] | None = None

    def list_profiles(self) -> list[str]:
        return _list_metadata_components(self.meta_path, 'profiles', PROFILE_SUFFIX)

    def list_permission_sets(self) -> list[str]:
        return _list_metadata_components(self.meta_path, 'permissionsets', PERMISSIONSET_SUFFIX)

    def list_permission_set_groups(self) -> list[str]:
        return _list_metadata_components(self.meta_path, 'permissionsetgroups', PERMISSIONSETGROUP_SUFFIX)

    def component_path(self, kind: DocumentKind, name: str) -> Path:
        """Path of a component file, trying source then MDAPI naming."""
        folder, source_suffix, mdapi_suffix = COMPONENT_LOCATIONS[DocumentKind(kind)]
        for candidate in _name_candidates(DocumentKind(kind), name):
            for suffix in (source_suffix, mdapi_suffix):
                path = self.meta_path / folder / f'{candidate}{suffix}'
                if path.is_file():
                    return path
        raise MetadataNotFoundError(DocumentKind(kind).value, name)

    def resolve_document(self, kind: DocumentKind, name: str) -> AccessDocument:
        """Load a profile, permission set or muting permission set by name."""
        kind = DocumentKind(kind)
        if kind not in (DocumentKind.PROFILE, DocumentKind.PERMISSION_SET, DocumentKind.MUTING_PERMISSION_SET):
            raise ValueError(f"{kind.value} documents are combined, not loaded; use resolve_group().")
        cache_key = (kind, name)
        if cache_key not in self._documents:
            metadata = load_metadata_file(self.component_path(kind, name))
            # Profiles carry no label element; their name is the display label.
            metadata.setdefault('label', name)
            self._documents[cache_key] = AccessDocument.from_metadata(kind, metadata, full_name=name)
        return self._documents[cache_key]

    def resolve_group(self, name: str) -> PermissionSetGroupDefinition:
        metadata = load_metadata_file(self.component_path(DocumentKind.PERMISSION_SET_GROUP, name))
        muting_names = get_metadata_prop_as_list(metadata, 'mutingPermissionSets')
        if len(muting_names) > 1:
            raise ValidationError('mutingPermissionSets', name, 'a permission set group has at most one muting permission set')
        return PermissionSetGroupDefinition(
            full_name=name,
            label=metadata.get('label') or name,
            permission_sets=tuple(get_metadata_prop_as_list(metadata, 'permissionSets')),
            muting_permission_set=muting_names[0] if muting_names else None,
        )

    def resolve_schema(self, object_name: str) -> ObjectSchema | None:
        """Labels for an object and its fields; None when the object is not in the project."""
        if object_name not in self._schemas:
            self._schemas[object_name] = self._load_schema(object_name)
        return self._schemas[object_name]

    def _load_schema(self, object_name: str) -> ObjectSchema | None:
        obj_dir = self.meta_path / 'objects' / object_name
        if not obj_dir.is_dir():
            return None
        label = object_name
        obj_file = obj_dir / f'{object_name}{OBJECT_META_SUFFIX}'
        if obj_file.is_file():
            label = load_metadata_file(obj_file).get('label') or object_name
        field_labels = {}
        fields_dir = obj_dir / 'fields'
        if fields_dir.is_dir():
            for fpath in fields_dir.glob(f'*{FIELD_META_SUFFIX}'):
                field_name = fpath.name[:-len(FIELD_META_SUFFIX)]
                field_labels[field_name] = load_metadata_file(fpath).get('label') or field_name
        return ObjectSchema(api_name=object_name, label=label, fields=field_labels)

    def application_labels(self) -> dict[str, str]:
        if self._app_labels is None:
            labels = {}
            for app_name in _list_metadata_components(self.meta_path, 'applications', APP_META_SUFFIX):
                metadata = load_metadata_file(self.meta_path / 'applications' / f'{app_name}{APP_META_SUFFIX}')
                labels[app_name] = metadata.get('label') or app_name
            self._app_labels = labels
        return self._app_labels
