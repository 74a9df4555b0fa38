"""Combination engine for effective Salesforce permissions.

Grants from every contributing document are merged additively per category;
a permission set group's muting permission set is then applied as a pure
revocation. Inputs are never mutated: every merged record is a new object, so
one permission set document can safely feed several groups and users.
"""

from dataclasses import fields, replace
from typing import Iterable

from perms_models import (
    CATEGORIES,
    FIELD_PERMISSIONS,
    MERGE_TAB,
    AccessDocument,
    Category,
    DocumentKind,
    TabVisibility,
    ValidationError,
    get_category,
)

_GROUP_MEMBER_KINDS = {DocumentKind.PERMISSION_SET}
_MUTING_KINDS = {DocumentKind.MUTING_PERMISSION_SET, DocumentKind.PERMISSION_SET}
_USER_ASSIGNMENT_KINDS = {DocumentKind.PERMISSION_SET, DocumentKind.PERMISSION_SET_GROUP}


def _merge_attrs(category: Category) -> list[str]:
    return [f.name for f in fields(category.record_type) if f.name != category.key_attr]


def _normalized(category: Category, record):
    """Copy of ``record`` with null flags read as false."""
    if category.merge_rule == MERGE_TAB:
        return replace(record, visibility=TabVisibility.parse(record.visibility))
    return replace(record, **{attr: bool(getattr(record, attr)) for attr in _merge_attrs(category)})


def _combine(category: Category, existing, current, merge_all: bool):
    if category.merge_rule == MERGE_TAB:
        existing_vis = TabVisibility.parse(existing.visibility)
        current_vis = TabVisibility.parse(current.visibility)
        return replace(existing, visibility=max(existing_vis, current_vis, key=lambda v: v.rank))
    merged_attrs = _merge_attrs(category) if merge_all else category.flag_attrs
    return replace(
        existing,
        **{attr: bool(getattr(existing, attr)) or bool(getattr(current, attr)) for attr in merged_attrs},
    )


def _mute(category: Category, existing, muted):
    if category.merge_rule == MERGE_TAB:
        # An Available mute hides the tab entirely.
        if TabVisibility.parse(muted.visibility) is TabVisibility.AVAILABLE:
            return replace(existing, visibility=TabVisibility.NONE)
        return existing
    if category is FIELD_PERMISSIONS:
        # Muting read access on a field also removes edit access.
        if muted.readable:
            return replace(existing, readable=False, editable=False)
        return existing
    cleared = {attr: False for attr in category.flag_attrs if getattr(muted, attr)}
    return replace(existing, **cleared) if cleared else existing


def merge_category(
    category: Category | str,
    documents: Iterable[AccessDocument],
    muting: AccessDocument | None = None,
    merge_all: bool = False,
) -> list | None:
    """Merge one category across documents, then apply an optional muting document.

    Args:
        category: Category descriptor or its metadata name.
        documents: Contributing documents, in any order.
        muting: Document whose grants are read as revocations. Keys it names
            that no contributing document carries are ignored.
        merge_all: OR every boolean attribute, not only the permission
            flags. Otherwise attributes such as an app's ``default`` keep the
            first value seen.

    Returns:
        The merged records in first-seen order, or None when no document
        contributes a record for the category.
    """
    category = get_category(category)
    merged: dict[str, object] = {}

    for document in documents:
        for record in document.records(category):
            key = category.key_of(record)
            existing = merged.get(key)
            if existing is None:
                merged[key] = _normalized(category, record)
            else:
                merged[key] = _combine(category, existing, record, merge_all)

    if muting is not None:
        for muted in muting.records(category):
            key = category.key_of(muted)
            existing = merged.get(key)
            if existing is not None:
                merged[key] = _mute(category, existing, muted)

    return list(merged.values()) if merged else None


def _check_kinds(documents: list[AccessDocument], allowed: set[DocumentKind], role: str) -> None:
    for document in documents:
        if document.kind not in allowed:
            allowed_names = ', '.join(sorted(k.value for k in allowed))
            raise ValidationError(
                role,
                document.full_name,
                f"document kind {document.kind.value} cannot be used here (expected {allowed_names})",
            )


def combine_group(
    members: Iterable[AccessDocument],
    muting: AccessDocument | None = None,
    full_name: str | None = None,
    label: str | None = None,
) -> AccessDocument:
    """Effective document of a permission set group.

    Every category is merged across the member permission sets and the muting
    permission set is then subtracted. A group without members has every
    category absent, whatever its muting permission set holds. Groups carry no
    page layout assignments.

    An app's ``default`` flag is taken from the first member that lists the
    app; only the user combination ORs it.
    """
    members = list(members)
    _check_kinds(members, _GROUP_MEMBER_KINDS, 'permissionSetGroup')
    if muting is not None:
        _check_kinds([muting], _MUTING_KINDS, 'mutingPermissionSet')

    if not members:
        return AccessDocument.empty(DocumentKind.PERMISSION_SET_GROUP, full_name, label)

    categories = {category.name: merge_category(category, members, muting) for category in CATEGORIES}
    return AccessDocument(
        kind=DocumentKind.PERMISSION_SET_GROUP,
        full_name=full_name,
        label=label or full_name,
        categories=categories,
    )


def combine_user(
    profile: AccessDocument,
    assignments: Iterable[AccessDocument],
    full_name: str | None = None,
    label: str | None = None,
) -> AccessDocument:
    """Effective document of a user.

    The profile is one more additive contributor next to the assigned
    permission sets and combined group documents; nothing is muted at this
    level. Page layout assignments come from the profile only.
    """
    assignments = list(assignments)
    _check_kinds([profile], {DocumentKind.PROFILE}, 'profile')
    _check_kinds(assignments, _USER_ASSIGNMENT_KINDS, 'permissionSetAssignment')

    documents = [profile, *assignments]
    categories = {category.name: merge_category(category, documents, merge_all=True) for category in CATEGORIES}
    return AccessDocument(
        kind=DocumentKind.USER,
        full_name=full_name,
        label=label or full_name,
        categories=categories,
        layout_assignments=profile.layout_assignments,
    )
