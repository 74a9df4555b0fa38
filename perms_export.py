"""Build effective-permission sheets for profiles, permission sets, groups and users."""

import datetime
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import click

from metadata_store import LocalMetadataStore, MetadataNotFoundError, MetadataParseError
from perms_combine import combine_group, combine_user
from perms_models import CATEGORIES, AccessDocument, DocumentKind, ValidationError
from perms_report import build_sheet_rows, make_sheet_name, write_sheet_csv
from tool_utils import ALL_COMPONENTS
from user_assignments import OrgQueryError, UserAssignment

# Failures that only affect the entity being exported.
ENTITY_ERRORS = (ValidationError, MetadataNotFoundError, MetadataParseError, OrgQueryError)

UserSource = Callable[[list[str]], dict[str, UserAssignment]]


@dataclass
class ExportRequest:
    """Names of the entities to export."""

    profiles: list[str] = field(default_factory=list)
    permission_sets: list[str] = field(default_factory=list)
    permission_set_groups: list[str] = field(default_factory=list)
    users: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.profiles or self.permission_sets or self.permission_set_groups or self.users)


@dataclass
class ExportResult:
    """Outcome of exporting one entity."""

    kind: DocumentKind
    name: str
    document: AccessDocument | None = None
    error: str | None = None
    sheet_path: Path | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PermissionsExportBuilder:
    """Resolves and combines the documents behind each exported entity."""

    def __init__(
        self,
        store: LocalMetadataStore,
        included_components: list[str] | None = None,
        verbose: bool = False,
        user_source: UserSource | None = None,
    ):
        self.store = store
        self.included_components = included_components or [ALL_COMPONENTS]
        self.verbose = verbose
        self.user_source = user_source
        self._groups: dict[str, AccessDocument] = {}

    def _describe(self, document: AccessDocument, sources: list[str]) -> None:
        if not self.verbose:
            return
        click.echo(f"  {document.kind.value} {click.style(document.display_name, bold=True)}")
        if sources:
            click.echo(f"    Contributing documents: {', '.join(sources)}")
        counts = [
            f"{category.name}={len(document.records(category))}"
            for category in CATEGORIES
            if document.has_category(category)
        ]
        click.echo(f"    Categories: {', '.join(counts) if counts else 'none'}")

    def build_profile(self, name: str) -> AccessDocument:
        document = self.store.resolve_document(DocumentKind.PROFILE, name)
        self._describe(document, [])
        return document

    def build_permission_set(self, name: str) -> AccessDocument:
        document = self.store.resolve_document(DocumentKind.PERMISSION_SET, name)
        self._describe(document, [])
        return document

    def build_group(self, name: str) -> AccessDocument:
        """Combined document of a permission set group; cached per run."""
        if name not in self._groups:
            definition = self.store.resolve_group(name)
            members = [
                self.store.resolve_document(DocumentKind.PERMISSION_SET, ps_name)
                for ps_name in definition.permission_sets
            ]
            muting = None
            if definition.muting_permission_set:
                muting = self.store.resolve_document(
                    DocumentKind.MUTING_PERMISSION_SET, definition.muting_permission_set
                )
            document = combine_group(members, muting, full_name=definition.full_name, label=definition.label)
            sources = list(definition.permission_sets)
            if definition.muting_permission_set:
                sources.append(f"{definition.muting_permission_set} (muting)")
            self._describe(document, sources)
            self._groups[name] = document
        return self._groups[name]

    def build_user(self, assignment: UserAssignment) -> AccessDocument:
        if not assignment.profile_name:
            raise ValidationError('user', assignment.username, 'user has no profile')
        profile = self.store.resolve_document(DocumentKind.PROFILE, assignment.profile_name)
        documents = [
            self.store.resolve_document(DocumentKind.PERMISSION_SET, ps_name)
            for ps_name in assignment.permission_sets
        ]
        documents.extend(self.build_group(group_name) for group_name in assignment.permission_set_groups)
        document = combine_user(profile, documents, full_name=assignment.username, label=assignment.name)
        sources = [f"{assignment.profile_name} (profile)", *assignment.permission_sets]
        sources.extend(f"{group} (group)" for group in assignment.permission_set_groups)
        self._describe(document, sources)
        return document

    def _run(self, kind: DocumentKind, name: str, build: Callable[[], AccessDocument]) -> ExportResult:
        try:
            return ExportResult(kind, name, document=build())
        except ENTITY_ERRORS as e:
            return ExportResult(kind, name, error=str(e))

    def _user_results(self, usernames: list[str]) -> list[ExportResult]:
        if not usernames:
            return []
        if self.user_source is None:
            return [
                ExportResult(DocumentKind.USER, username, error='User export requires a target org.')
                for username in usernames
            ]
        try:
            assignments = self.user_source(usernames)
        except OrgQueryError as e:
            return [ExportResult(DocumentKind.USER, username, error=str(e)) for username in usernames]

        results = []
        for username in usernames:
            assignment = assignments.get(username)
            if assignment is None:
                results.append(ExportResult(DocumentKind.USER, username, error=f"User '{username}' was not found in the org."))
                continue
            results.append(self._run(DocumentKind.USER, username, lambda a=assignment: self.build_user(a)))
        return results

    def build_all(self, request: ExportRequest) -> list[ExportResult]:
        """Build every requested entity; a failure is recorded, not raised."""
        results = []
        for name in request.permission_sets:
            results.append(self._run(DocumentKind.PERMISSION_SET, name, lambda n=name: self.build_permission_set(n)))
        for name in request.profiles:
            results.append(self._run(DocumentKind.PROFILE, name, lambda n=name: self.build_profile(n)))
        for name in request.permission_set_groups:
            results.append(self._run(DocumentKind.PERMISSION_SET_GROUP, name, lambda n=name: self.build_group(n)))
        results.extend(self._user_results(request.users))
        return results

    def write_sheets(self, results: list[ExportResult], output_dir: Path) -> Path:
        """Write one CSV sheet per successful result into a timestamped folder."""
        ts = datetime.datetime.now().strftime('%Y%m%d_%H%M%S')
        export_dir = Path(output_dir) / f'permissions_{ts}'
        used_names: set[str] = set()
        for result in results:
            if not result.ok:
                continue
            try:
                rows = build_sheet_rows(
                    result.document,
                    self.store.resolve_schema,
                    self.store.application_labels(),
                    self.included_components,
                )
            except MetadataParseError as e:
                result.error = str(e)
                continue
            sheet_name = make_sheet_name(result.document.display_name, used_names)
            result.sheet_path = write_sheet_csv(export_dir / f'{sheet_name}.csv', rows)
        return export_dir
