"""Bulk create-or-update of catalog rows identified by natural keys.

One run takes the parsed rows of a sheet and walks them through
``PARSED -> VALIDATED -> RESOLVED -> PERSISTED -> TRANSLATION_QUEUED``; a row
that cannot make the next step is ``FAILED`` with the kind of error that
stopped it and the other rows carry on. There is no transaction around the
run: each insert chunk and each update is its own unit of work, so nothing a
failing row does can undo the rows that succeeded.

Parents are written before children. Rows naming a parent that does not
exist yet collapse onto a single create per name, later rows for the same
name become partial updates of that new entity, and children are then
matched under the parent's id.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import CatalogError, ReferenceNotFoundError, ValidationError
from ..repos.catalog_repo import Scope
from ..repos_sqlalchemy.entity_repo_sql import EntityRepoSQL, store_errors
from ..routes_metrics import catalog_import_rows_total
from ..utils.names import normalize_key
from .import_profiles import EntityBinding, ImportProfile
from .natural_keys import NaturalKeyResolver
from .translations import TranslationOrchestrator, TranslationRequest

logger = logging.getLogger("catalog.reconciler")


class RowState(str, Enum):
    PARSED = "parsed"
    VALIDATED = "validated"
    RESOLVED = "resolved"
    PERSISTED = "persisted"
    FAILED = "failed"
    TRANSLATION_QUEUED = "translation_queued"


@dataclass
class _Write:
    """One insert or merged partial update and the rows depending on it."""

    entity_id: UUID
    name: str
    payload: dict[str, Any]
    rows: list["ImportRow"] = field(default_factory=list)
    done: bool = False
    error: CatalogError | None = None


@dataclass
class ImportRow:
    number: int
    data: dict[str, Any]
    state: RowState = RowState.PARSED
    action: str | None = None
    error_kind: str | None = None
    message: str | None = None
    refs: dict[str, Any] = field(default_factory=dict)
    links: dict[str, Any] = field(default_factory=dict)
    parent_id: UUID | None = None
    child_action: str | None = None
    writes: list[_Write] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.state is RowState.FAILED

    def fail(self, exc: CatalogError) -> None:
        if self.failed:
            return
        self.state = RowState.FAILED
        self.error_kind = exc.kind
        self.message = exc.message


@dataclass
class ImportResult:
    sheet: str
    rows: list[ImportRow]

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.rows if not r.failed)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.rows if r.failed)

    @property
    def created_count(self) -> int:
        return sum(1 for r in self.rows if not r.failed and r.action == "create")

    @property
    def updated_count(self) -> int:
        return sum(1 for r in self.rows if not r.failed and r.action == "update")

    @property
    def errors(self) -> list[dict[str, Any]]:
        return [
            {"rowNumber": r.number, "message": r.message, "errorKind": r.error_kind}
            for r in sorted(self.rows, key=lambda r: r.number)
            if r.failed
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "createdCount": self.created_count,
            "updatedCount": self.updated_count,
            "errors": self.errors,
        }


def _alive(rows: Iterable[ImportRow]) -> list[ImportRow]:
    return [r for r in rows if not r.failed]


def _label(entity_type: str) -> str:
    return entity_type.replace("_", " ")


def _text_of(value: Any) -> str:
    return str(value).strip()


def _creates_cycle(parents: dict[UUID, UUID | None], child: UUID, target: UUID) -> bool:
    """True when ``target`` already has ``child`` among its ancestors."""
    seen: set[UUID] = set()
    current: UUID | None = target
    while current is not None and current not in seen:
        if current == child:
            return True
        seen.add(current)
        current = parents.get(current)
    return False


class BatchReconciler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        translations: TranslationOrchestrator | None = None,
        *,
        update_concurrency: int = 10,
        create_batch_size: int = 20,
    ) -> None:
        self.session_factory = session_factory
        self.translations = translations
        self.update_concurrency = max(1, update_concurrency)
        self.create_batch_size = max(1, create_batch_size)

    # ------------------------------------------------------------------ public

    def validate(self, profile: ImportProfile, rows: list[dict]) -> list[ImportRow]:
        """Check every row on its own; failed rows get a validation error."""
        items = [
            ImportRow(number=data.get("_row", index + 2), data=data)
            for index, data in enumerate(rows)
        ]
        for row in items:
            messages = profile.validate(row.data)
            if messages:
                row.fail(ValidationError("; ".join(messages)))
            else:
                row.state = RowState.VALIDATED
        return items

    def dry_run(self, profile: ImportProfile, rows: list[dict]) -> dict[str, Any]:
        """Validation report for ``rows`` without touching the store."""
        items = self.validate(profile, rows)
        result = ImportResult(profile.sheet, items)
        return {
            "totalRows": len(items),
            "validRows": result.success_count,
            "invalidRows": result.failed_count,
            "errors": result.errors,
        }

    async def run(
        self, profile: ImportProfile, scope: Scope, rows: list[dict]
    ) -> ImportResult:
        """Import ``rows`` of ``profile``'s sheet into ``scope``.

        Never raises for row problems; the result lists every failed row
        with its spreadsheet row number.
        """
        items = self.validate(profile, rows)
        live = _alive(items)
        if live:
            try:
                snapshots = await self._snapshots(profile, scope)
            except CatalogError as exc:
                for row in live:
                    row.fail(exc)
            else:
                await self._reconcile(profile, scope, live, *snapshots)

        result = ImportResult(profile.sheet, items)
        self._count(profile.sheet, items)
        logger.info(
            "import %s: %d ok, %d failed (%d created, %d updated)",
            profile.sheet,
            result.success_count,
            result.failed_count,
            result.created_count,
            result.updated_count,
            extra={
                "event": "import.completed",
                "tenant": scope.tenant_id,
                "entity_type": profile.parent.entity_type,
            },
        )
        return result

    # ---------------------------------------------------------------- phases

    async def _snapshots(self, profile: ImportProfile, scope: Scope):
        async with self.session_factory() as session:
            parents = await NaturalKeyResolver.snapshot(
                session, profile.parent.repo, scope
            )
            children = None
            if profile.child is not None:
                children = await NaturalKeyResolver.snapshot(
                    session, profile.child.repo, scope
                )
            lookups = {}
            for ref in profile.references:
                lookups[ref.field] = await NaturalKeyResolver.snapshot(
                    session, ref.repo, scope
                )
        return parents, children, lookups

    async def _reconcile(
        self,
        profile: ImportProfile,
        scope: Scope,
        live: list[ImportRow],
        parents: NaturalKeyResolver,
        children: NaturalKeyResolver | None,
        lookups: dict[str, NaturalKeyResolver],
    ) -> None:
        self._resolve_references(profile, lookups, live)

        binding = profile.parent
        creates, updates, links = self._plan_parents(profile, parents, _alive(live))
        await self._insert(binding.repo, scope, list(creates.values()))
        created = self._settle_creates(binding, parents, creates.values())

        pending = {w.entity_id for w in creates.values()}
        for link in links.values():
            target = link.payload[profile.self_reference.attr]
            if target not in created:
                for row in link.rows:
                    row.fail(
                        ReferenceNotFoundError(
                            f"parent {_label(binding.entity_type)} "
                            f"'{row.data[profile.self_reference.field]}' was not created"
                        )
                    )
        await self._update(binding.repo, scope, self._ready(updates, pending, created))
        await self._update(binding.repo, scope, self._ready(links, pending, created))

        if profile.child is not None and children is not None:
            await self._reconcile_children(profile, scope, _alive(live), children)

        extra_requests: list[TranslationRequest] = []
        if profile.relations is not None:
            extra_requests = await self._apply_relations(profile, scope, _alive(live))

        for row in _alive(live):
            row.state = RowState.PERSISTED
            row.action = row.child_action or row.action
        await self._queue_translations(profile, scope, live, extra_requests)

    def _resolve_references(
        self,
        profile: ImportProfile,
        lookups: dict[str, NaturalKeyResolver],
        rows: list[ImportRow],
    ) -> None:
        for row in rows:
            for ref in profile.references:
                if ref.field not in row.data:
                    continue
                resolver = lookups[ref.field]
                names = row.data[ref.field] if ref.many else [row.data[ref.field]]
                ids, missing = [], []
                for name in names:
                    found = resolver.resolve(name)
                    if found is None:
                        missing.append(str(name))
                    else:
                        ids.append(found)
                if missing:
                    row.fail(
                        ReferenceNotFoundError(
                            f"{_label(ref.repo.entity_type)} not found: "
                            + ", ".join(f"'{m}'" for m in missing)
                        )
                    )
                    break
                target = row.links if ref.link else row.refs
                target[ref.attr] = (
                    list(dict.fromkeys(str(i) for i in ids)) if ref.many else ids[0]
                )
            if not row.failed:
                row.state = RowState.RESOLVED

    def _plan_parents(
        self,
        profile: ImportProfile,
        parents: NaturalKeyResolver,
        rows: list[ImportRow],
    ):
        binding = profile.parent
        selfref = profile.self_reference
        creates: dict[str, _Write] = {}
        updates: dict[UUID, _Write] = {}
        links: dict[UUID, _Write] = {}

        # ids for every new name up front, so rows may point at parents
        # defined anywhere in the file
        pending_ids: dict[str, UUID] = {}
        for row in rows:
            name = binding.key_convert(row.data[binding.key_field])
            if parents.resolve(name) is None:
                pending_ids.setdefault(normalize_key(name), uuid.uuid4())

        graph: dict[UUID, UUID | None] = {}
        if selfref is not None:
            graph = {
                entity_id: getattr(entity, selfref.attr)
                for entity_id, entity in parents.entities.items()
            }

        for row in rows:
            name = binding.key_convert(row.data[binding.key_field])
            key = normalize_key(name)
            existing = parents.resolve(name)
            if existing is None and not binding.create_missing:
                row.fail(
                    ReferenceNotFoundError(
                        f"{_label(binding.entity_type)} '{name}' not found"
                    )
                )
                continue
            entity_id = existing or pending_ids[key]
            values = {**binding.values(row.data), **row.refs}

            deferred_target = None
            if selfref is not None and row.data.get(selfref.field):
                target_name = _text_of(row.data[selfref.field])
                target = parents.resolve(target_name) or pending_ids.get(
                    normalize_key(target_name)
                )
                if target is None:
                    row.fail(
                        ReferenceNotFoundError(
                            f"parent {_label(binding.entity_type)} '{target_name}' not found"
                        )
                    )
                    continue
                if target == entity_id:
                    row.fail(
                        ValidationError(
                            f"{_label(binding.entity_type)} '{name}' cannot be its own parent"
                        )
                    )
                    continue
                if _creates_cycle(graph, entity_id, target):
                    row.fail(
                        ValidationError(
                            f"'{target_name}' is a descendant of '{name}'; "
                            "the parent would create a cycle"
                        )
                    )
                    continue
                graph[entity_id] = target
                if parents.resolve(target_name) is None:
                    deferred_target = target
                else:
                    values[selfref.attr] = target

            row.parent_id = entity_id
            if existing is not None:
                row.action = "update" if binding.create_missing else None
                if binding.create_missing:
                    self._merge(
                        updates, entity_id, name, {binding.key_attr: name, **values}, row
                    )
            elif key not in creates:
                payload = binding.create_payload(row.data, values)
                payload["id"] = entity_id
                write = creates[key] = _Write(entity_id, name, payload, [row])
                row.writes.append(write)
                row.action = "create"
            else:
                write = creates[key]
                write.rows.append(row)
                row.writes.append(write)
                row.action = "update"
                if values:
                    self._merge(updates, entity_id, name, values, row)
            if deferred_target is not None:
                self._merge(links, entity_id, name, {selfref.attr: deferred_target}, row)
        return creates, updates, links

    def _settle_creates(
        self,
        binding: EntityBinding,
        resolver: NaturalKeyResolver,
        creates: Iterable[_Write],
        parent_id: UUID | None = None,
    ) -> set[UUID]:
        """Record new ids; fail the rows of inserts that did not happen."""
        created: set[UUID] = set()
        for write in creates:
            if write.done:
                created.add(write.entity_id)
                resolver.remember(write.name, write.entity_id, parent_id)
                continue
            creator, *others = write.rows
            creator.fail(write.error)
            for row in others:
                row.fail(
                    ReferenceNotFoundError(
                        f"{_label(binding.entity_type)} '{write.name}' was not created"
                    )
                )
        return created

    @staticmethod
    def _ready(
        writes: dict[UUID, _Write], pending: set[UUID], created: set[UUID]
    ) -> list[_Write]:
        """Updates whose entity exists and that still serve a live row."""
        ready = []
        for write in writes.values():
            if write.entity_id in pending and write.entity_id not in created:
                continue
            if _alive(write.rows):
                ready.append(write)
        return ready

    async def _reconcile_children(
        self,
        profile: ImportProfile,
        scope: Scope,
        rows: list[ImportRow],
        children: NaturalKeyResolver,
    ) -> None:
        binding = profile.child
        parent_column = binding.repo.parent_column
        creates: dict[tuple[UUID, str], _Write] = {}
        updates: dict[UUID, _Write] = {}
        for row in rows:
            if not profile.has_child(row.data):
                continue
            if row.parent_id is None:
                row.fail(
                    ReferenceNotFoundError(
                        f"{_label(profile.parent.entity_type)} "
                        f"'{row.data.get(profile.parent.key_field)}' not found"
                    )
                )
                continue
            name = binding.key_convert(row.data[binding.key_field])
            values = binding.values(row.data)
            existing = children.resolve(name, row.parent_id)
            if existing is not None:
                row.child_action = "update"
                self._merge(
                    updates, existing, name, {binding.key_attr: name, **values}, row
                )
                continue
            key = (row.parent_id, normalize_key(name))
            if key not in creates:
                payload = binding.create_payload(row.data, values)
                payload["id"] = uuid.uuid4()
                payload[parent_column] = row.parent_id
                write = creates[key] = _Write(payload["id"], name, payload, [row])
                row.writes.append(write)
                row.child_action = "create"
            else:
                write = creates[key]
                write.rows.append(row)
                row.writes.append(write)
                row.child_action = "update"
                if values:
                    self._merge(updates, write.entity_id, name, values, row)

        await self._insert(binding.repo, scope, list(creates.values()))
        created: set[UUID] = set()
        for (parent_id, _), write in creates.items():
            created |= self._settle_creates(binding, children, [write], parent_id)
        pending = {w.entity_id for w in creates.values()}
        await self._update(binding.repo, scope, self._ready(updates, pending, created))

    async def _apply_relations(
        self, profile: ImportProfile, scope: Scope, rows: list[ImportRow]
    ) -> list[TranslationRequest]:
        # one row at a time: several rows may touch the same menus
        requests: list[TranslationRequest] = []
        for row in rows:
            try:
                requests.extend(
                    await self._unit(
                        profile.parent.entity_type,
                        lambda s, row=row: profile.relations(
                            s, scope, row.parent_id, row.data, row.links
                        ),
                    )
                )
            except CatalogError as exc:
                row.fail(exc)
        return requests

    async def _queue_translations(
        self,
        profile: ImportProfile,
        scope: Scope,
        rows: list[ImportRow],
        extra: list[TranslationRequest],
    ) -> None:
        if self.translations is None:
            return
        requests: dict[UUID, TranslationRequest] = {}
        sources: dict[UUID, list[ImportRow]] = {}
        for row in rows:
            if row.state is not RowState.PERSISTED:
                continue
            for write in row.writes:
                if not write.done:
                    continue
                binding = (
                    profile.child
                    if profile.child is not None and write.entity_id != row.parent_id
                    else profile.parent
                )
                fields = {
                    name: write.payload[name]
                    for name in binding.translate
                    if isinstance(write.payload.get(name), str) and write.payload[name]
                }
                if not fields:
                    continue
                request = requests.setdefault(
                    write.entity_id,
                    TranslationRequest(binding.entity_type, write.entity_id),
                )
                request.fields.update(fields)
                sources.setdefault(write.entity_id, []).append(row)
        queued = await self.translations.enqueue_batch(
            scope.tenant_id, [*requests.values(), *extra]
        )
        if queued:
            for entity_rows in sources.values():
                for row in entity_rows:
                    row.state = RowState.TRANSLATION_QUEUED

    # ------------------------------------------------------------- execution

    @staticmethod
    def _merge(
        writes: dict[UUID, _Write],
        entity_id: UUID,
        name: str,
        values: dict[str, Any],
        row: ImportRow,
    ) -> None:
        write = writes.get(entity_id)
        if write is None:
            write = writes[entity_id] = _Write(entity_id, name, {})
        write.payload.update(values)
        write.rows.append(row)
        row.writes.append(write)

    async def _unit(
        self, entity_type: str, work: Callable[[AsyncSession], Awaitable[Any]]
    ) -> Any:
        async with self.session_factory() as session:
            result = await work(session)
            with store_errors(entity_type):
                await session.commit()
            return result

    async def _insert(
        self, repo: EntityRepoSQL, scope: Scope, writes: list[_Write]
    ) -> None:
        """Insert in chunks; a failing chunk is retried row by row."""
        size = self.create_batch_size
        for start in range(0, len(writes), size):
            chunk = writes[start : start + size]
            try:
                await self._unit(
                    repo.entity_type,
                    lambda s, chunk=chunk: repo.insert_many(
                        s, scope, [w.payload for w in chunk]
                    ),
                )
            except CatalogError as exc:
                if len(chunk) == 1:
                    chunk[0].error = exc
                    continue
                logger.warning(
                    "bulk insert of %d %s rows failed, retrying one by one: %s",
                    len(chunk),
                    repo.entity_type,
                    exc.message,
                    extra={
                        "event": "import.bulk_fallback",
                        "tenant": scope.tenant_id,
                        "entity_type": repo.entity_type,
                        "error_kind": exc.kind,
                    },
                )
                for write in chunk:
                    try:
                        await self._unit(
                            repo.entity_type,
                            lambda s, write=write: repo.insert_many(
                                s, scope, [write.payload]
                            ),
                        )
                    except CatalogError as row_exc:
                        write.error = row_exc
                    else:
                        write.done = True
            else:
                for write in chunk:
                    write.done = True

    async def _update(
        self, repo: EntityRepoSQL, scope: Scope, writes: list[_Write]
    ) -> None:
        """Apply partial updates, at most ``update_concurrency`` at a time."""
        if not writes:
            return
        semaphore = asyncio.Semaphore(self.update_concurrency)

        async def apply(write: _Write) -> None:
            async with semaphore:
                try:
                    await self._unit(
                        repo.entity_type,
                        lambda s: repo.update_by_id(
                            s, scope, write.entity_id, write.payload
                        ),
                    )
                except CatalogError as exc:
                    write.error = exc
                    for row in write.rows:
                        row.fail(exc)
                else:
                    write.done = True

        await asyncio.gather(*(apply(w) for w in writes))

    @staticmethod
    def _count(sheet: str, rows: list[ImportRow]) -> None:
        for row in rows:
            outcome = "failed" if row.failed else row.action or "unchanged"
            catalog_import_rows_total.labels(sheet=sheet, outcome=outcome).inc()

