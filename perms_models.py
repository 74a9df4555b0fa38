"""Typed access documents for Salesforce profiles, permission sets and groups.

A document is built once from the single-or-list dictionary shape returned by
the Metadata API (or by ``metadata_store.xml_to_metadata``) and is treated as
an immutable value from then on.
"""

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Iterable, Mapping


class DocumentKind(str, Enum):
    """Kind of access document."""

    PROFILE = 'Profile'
    PERMISSION_SET = 'PermissionSet'
    MUTING_PERMISSION_SET = 'MutingPermissionSet'
    PERMISSION_SET_GROUP = 'PermissionSetGroup'
    USER = 'User'


class TabVisibility(str, Enum):
    """Tab visibility on the permission set scale."""

    NONE = 'None'
    AVAILABLE = 'Available'
    VISIBLE = 'Visible'

    @property
    def rank(self) -> int:
        return _TAB_RANKS[self]

    @classmethod
    def parse(cls, value: str | None) -> 'TabVisibility':
        """Map a permission set or profile tab value onto the common scale.

        Raises KeyError for values outside both vocabularies.
        """
        if value is None or value == '':
            return cls.NONE
        if isinstance(value, TabVisibility):
            return value
        return _TAB_ALIASES[value]


_TAB_RANKS = {
    TabVisibility.NONE: 0,
    TabVisibility.AVAILABLE: 1,
    TabVisibility.VISIBLE: 2,
}

# Profiles use DefaultOn/DefaultOff/Hidden in tabVisibilities.
_TAB_ALIASES = {
    'None': TabVisibility.NONE,
    'Available': TabVisibility.AVAILABLE,
    'Visible': TabVisibility.VISIBLE,
    'Hidden': TabVisibility.NONE,
    'DefaultOff': TabVisibility.AVAILABLE,
    'DefaultOn': TabVisibility.VISIBLE,
}


class ValidationError(ValueError):
    """Raised when a metadata record is structurally malformed."""

    def __init__(self, category: str, record: Any, reason: str):
        self.category = category
        self.record = record
        self.reason = reason
        super().__init__(f"Invalid {category} record {record!r}: {reason}")


def parse_bool(value: Any) -> bool:
    """Interpret a metadata flag; absent and null read as false."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() == 'true'


def get_metadata_prop_as_list(metadata: Mapping[str, Any] | None, prop: str) -> list:
    """Return ``metadata[prop]`` as a list whatever the store's cardinality.

    The Metadata API returns a lone record unwrapped and a repeated one as a
    list; absent or null values give an empty list.
    """
    if not metadata:
        return []
    value = metadata.get(prop)
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


# --- Category records ---
# ``sf`` names the metadata element a field is read from.

def _sf(name: str) -> Any:
    return field(metadata={'sf': name})


@dataclass(frozen=True)
class ApplicationVisibility:
    application: str
    visible: bool = False
    default: bool = False


@dataclass(frozen=True)
class ApexClassAccess:
    apex_class: str = _sf('apexClass')
    enabled: bool = False


@dataclass(frozen=True)
class CustomMetadataTypeAccess:
    name: str
    enabled: bool = False


@dataclass(frozen=True)
class CustomPermission:
    name: str
    enabled: bool = False


@dataclass(frozen=True)
class CustomSettingAccess:
    name: str
    enabled: bool = False


@dataclass(frozen=True)
class FlowAccess:
    flow: str
    enabled: bool = False


@dataclass(frozen=True)
class ApexPageAccess:
    apex_page: str = _sf('apexPage')
    enabled: bool = False


@dataclass(frozen=True)
class RecordTypeVisibility:
    record_type: str = _sf('recordType')
    visible: bool = False


@dataclass(frozen=True)
class UserPermission:
    name: str
    enabled: bool = False


@dataclass(frozen=True)
class TabSetting:
    tab: str
    visibility: TabVisibility = TabVisibility.NONE


@dataclass(frozen=True)
class ObjectPermission:
    object_name: str = _sf('object')
    allow_read: bool = field(default=False, metadata={'sf': 'allowRead'})
    allow_create: bool = field(default=False, metadata={'sf': 'allowCreate'})
    allow_edit: bool = field(default=False, metadata={'sf': 'allowEdit'})
    allow_delete: bool = field(default=False, metadata={'sf': 'allowDelete'})
    view_all_records: bool = field(default=False, metadata={'sf': 'viewAllRecords'})
    modify_all_records: bool = field(default=False, metadata={'sf': 'modifyAllRecords'})


@dataclass(frozen=True)
class FieldPermission:
    field_name: str = _sf('field')
    readable: bool = False
    editable: bool = False


@dataclass(frozen=True)
class LayoutAssignment:
    layout: str
    record_type: str | None = _sf('recordType')


def _metadata_name(f) -> str:
    return f.metadata.get('sf', f.name)


MERGE_OR = 'or'
MERGE_TAB = 'tab'


@dataclass(frozen=True)
class Category:
    """Descriptor for one mergeable permission category."""

    name: str
    record_type: type
    key_attr: str
    flag_attrs: tuple[str, ...]
    merge_rule: str = MERGE_OR
    profile_element: str | None = None

    def element_for(self, kind: DocumentKind) -> str:
        """Metadata element holding this category for a document kind."""
        if kind is DocumentKind.PROFILE and self.profile_element:
            return self.profile_element
        return self.name

    def key_of(self, record) -> str:
        return getattr(record, self.key_attr)

    def record_from_metadata(self, raw: Any):
        """Build a typed record from one raw metadata entry."""
        if isinstance(raw, self.record_type):
            return raw
        if not isinstance(raw, Mapping):
            raise ValidationError(self.name, raw, 'expected a mapping of metadata fields')
        values = {}
        for f in fields(self.record_type):
            raw_value = raw.get(_metadata_name(f))
            if f.name == self.key_attr:
                if raw_value is None or str(raw_value).strip() == '':
                    raise ValidationError(self.name, raw, f"missing key field '{_metadata_name(f)}'")
                values[f.name] = str(raw_value).strip()
            elif f.name in self.flag_attrs:
                values[f.name] = self._parse_flag(raw, raw_value)
            elif raw_value is not None:
                values[f.name] = self._parse_flag(raw, raw_value) if isinstance(f.default, bool) else raw_value
        return self.record_type(**values)

    def _parse_flag(self, raw, raw_value):
        if self.merge_rule == MERGE_TAB:
            try:
                return TabVisibility.parse(raw_value)
            except KeyError:
                raise ValidationError(self.name, raw, f"unknown tab visibility '{raw_value}'") from None
        return parse_bool(raw_value)


APPLICATION_VISIBILITIES = Category('applicationVisibilities', ApplicationVisibility, 'application', ('visible',))
CLASS_ACCESSES = Category('classAccesses', ApexClassAccess, 'apex_class', ('enabled',))
CUSTOM_METADATA_TYPE_ACCESSES = Category('customMetadataTypeAccesses', CustomMetadataTypeAccess, 'name', ('enabled',))
CUSTOM_PERMISSIONS = Category('customPermissions', CustomPermission, 'name', ('enabled',))
CUSTOM_SETTING_ACCESSES = Category('customSettingAccesses', CustomSettingAccess, 'name', ('enabled',))
FIELD_PERMISSIONS = Category('fieldPermissions', FieldPermission, 'field_name', ('readable', 'editable'))
FLOW_ACCESSES = Category('flowAccesses', FlowAccess, 'flow', ('enabled',))
OBJECT_PERMISSIONS = Category(
    'objectPermissions',
    ObjectPermission,
    'object_name',
    ('allow_read', 'allow_create', 'allow_edit', 'allow_delete', 'view_all_records', 'modify_all_records'),
)
PAGE_ACCESSES = Category('pageAccesses', ApexPageAccess, 'apex_page', ('enabled',))
RECORD_TYPE_VISIBILITIES = Category('recordTypeVisibilities', RecordTypeVisibility, 'record_type', ('visible',))
TAB_SETTINGS = Category(
    'tabSettings', TabSetting, 'tab', ('visibility',), merge_rule=MERGE_TAB, profile_element='tabVisibilities'
)
USER_PERMISSIONS = Category('userPermissions', UserPermission, 'name', ('enabled',))

CATEGORIES: tuple[Category, ...] = (
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
)
CATEGORIES_BY_NAME = {c.name: c for c in CATEGORIES}


def get_category(category: 'Category | str') -> Category:
    """Resolve a category by descriptor or by name (``tabVisibilities`` included)."""
    if isinstance(category, Category):
        return category
    if category == TAB_SETTINGS.profile_element:
        return TAB_SETTINGS
    try:
        return CATEGORIES_BY_NAME[category]
    except KeyError:
        raise ValueError(f"Unknown permission category: {category}") from None


def _layout_from_metadata(raw: Any) -> LayoutAssignment:
    if not isinstance(raw, Mapping) or not raw.get('layout'):
        raise ValidationError('layoutAssignments', raw, "missing key field 'layout'")
    return LayoutAssignment(layout=str(raw['layout']).strip(), record_type=raw.get('recordType') or None)


@dataclass(frozen=True)
class AccessDocument:
    """A profile, permission set, or combined result as category lists.

    ``categories`` maps a category name to a tuple of records, or to None when
    the document does not carry the category at all.
    """

    kind: DocumentKind
    full_name: str | None = None
    label: str | None = None
    categories: Mapping[str, tuple | None] = field(default_factory=dict)
    layout_assignments: tuple[LayoutAssignment, ...] | None = None

    @classmethod
    def from_metadata(cls, kind: DocumentKind, metadata: Mapping[str, Any], full_name: str | None = None) -> 'AccessDocument':
        """Normalise a raw metadata dictionary into a typed document."""
        kind = DocumentKind(kind)
        categories: dict[str, tuple | None] = {}
        for category in CATEGORIES:
            element = category.element_for(kind)
            if metadata.get(element) is None:
                categories[category.name] = None
                continue
            categories[category.name] = tuple(
                category.record_from_metadata(raw) for raw in get_metadata_prop_as_list(metadata, element)
            )

        layouts = None
        if kind is DocumentKind.PROFILE and metadata.get('layoutAssignments') is not None:
            layouts = tuple(
                _layout_from_metadata(raw) for raw in get_metadata_prop_as_list(metadata, 'layoutAssignments')
            )

        name = full_name or metadata.get('fullName')
        return cls(
            kind=kind,
            full_name=name,
            label=metadata.get('label') or name,
            categories=categories,
            layout_assignments=layouts,
        )

    @classmethod
    def empty(cls, kind: DocumentKind, full_name: str | None = None, label: str | None = None) -> 'AccessDocument':
        return cls(kind=kind, full_name=full_name, label=label or full_name, categories={c.name: None for c in CATEGORIES})

    def records(self, category: 'Category | str') -> tuple:
        """Records of a category; empty when absent."""
        return self.categories.get(get_category(category).name) or ()

    def has_category(self, category: 'Category | str') -> bool:
        return self.categories.get(get_category(category).name) is not None

    def with_categories(self, categories: Mapping[str, Iterable | None]) -> 'AccessDocument':
        frozen = {name: (tuple(records) if records is not None else None) for name, records in categories.items()}
        return replace(self, categories=frozen)

    @property
    def display_name(self) -> str:
        return self.label or self.full_name or self.kind.value
