"""
Import pipeline – uploaded file → validated records → gateway creates.

Rows are committed one at a time, in file order, each create finishing before
the next starts. Commit policy is best-effort: a failed create is recorded and
the loop moves on. Rows already committed stay committed; there is no
cross-row transaction and no de-duplication against existing records.
"""

import threading
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Tuple, Union

from biofactor.errors import GatewayError, MissingRequiredFieldError, PermissionDenied
from biofactor.importer.parsing import parse_file
from biofactor.importer.schemas import Lookup, ResourceSchema, coerce_fields, pick_fields, validate_row
from biofactor.models import AggregateImportResult, ImportState, OutcomeKind, RowOutcome, Session
from biofactor.rbac import can_perform


class CancellationToken:
    """Checked before every row submission; cancel() stops the commit loop."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class ImportJob:
    source_name: str
    content: Union[bytes, BinaryIO]
    schema: ResourceSchema


def can_import(session: Optional[Session], schema: ResourceSchema) -> bool:
    """Import is offered only to principals holding the resource's create key."""
    principal = session.principal if session else None
    return can_perform(principal, schema.name, "create")


class ImportPipeline:
    """Runs ImportJobs against a DataGateway and reports an aggregate tally."""

    def __init__(self, gateway, on_state: Optional[Callable[[ImportState], None]] = None):
        self.gateway = gateway
        self.on_state = on_state
        self.state = ImportState.IDLE

    def _enter(self, state: ImportState) -> None:
        self.state = state
        if self.on_state is not None:
            self.on_state(state)

    def run(self, job: ImportJob, session: Session,
            cancel_token: Optional[CancellationToken] = None) -> AggregateImportResult:
        if not can_import(session, job.schema):
            raise PermissionDenied(f"Not allowed to import {job.schema.name}", resource=job.schema.name)

        schema = job.schema
        try:
            self._enter(ImportState.READING)
            content = job.content if isinstance(job.content, bytes) else job.content.read()

            self._enter(ImportState.PARSING)
            raw_rows = parse_file(job.source_name, content)

            self._enter(ImportState.MAPPING)
            lookups = self.load_lookups(schema)
            picked = [pick_fields(raw, schema) for raw in raw_rows]

            self._enter(ImportState.COERCING)
            candidates = [coerce_fields(p, schema, lookups) for p in picked]
            if schema.stamp_creator:
                for c in candidates:
                    c["created_by"] = session.principal.id

            self._enter(ImportState.VALIDATING)
            accepted, outcomes = self.validate(candidates, schema)
        except Exception:
            self._enter(ImportState.FAILED)
            raise

        self._enter(ImportState.COMMITTING)
        committed = self.commit(schema.name, accepted, cancel_token)
        outcomes.extend(committed)
        outcomes.sort(key=lambda o: o.row_index)

        result = AggregateImportResult(
            success_count=sum(1 for o in outcomes if o.kind == OutcomeKind.INSERTED),
            total_rows=len(raw_rows),
            dropped_count=sum(1 for o in outcomes if o.kind == OutcomeKind.DROPPED),
            failed_count=sum(1 for o in outcomes if o.kind == OutcomeKind.FAILED),
            cancelled=bool(cancel_token and cancel_token.cancelled),
            outcomes=outcomes,
        )
        self._enter(ImportState.COMPLETED)
        print(f"[import] {schema.name} from {job.source_name}: {result.summary}"
              f" (dropped={result.dropped_count}, failed={result.failed_count},"
              f" cancelled={result.cancelled})")
        return result

    def load_lookups(self, schema: ResourceSchema) -> Dict[str, Lookup]:
        return {
            name: Lookup.from_rows(self.gateway.list(spec.resource), spec)
            for name, spec in schema.lookups.items()
        }

    @staticmethod
    def validate(candidates: List[Dict[str, Any]], schema: ResourceSchema) -> Tuple[list, List[RowOutcome]]:
        accepted, dropped = [], []
        for index, candidate in enumerate(candidates):
            try:
                accepted.append((index, validate_row(candidate, schema)))
            except MissingRequiredFieldError as e:
                dropped.append(RowOutcome(index, OutcomeKind.DROPPED, reason=str(e)))
        return accepted, dropped

    def commit(self, resource: str, accepted: list,
               cancel_token: Optional[CancellationToken] = None) -> List[RowOutcome]:
        """Create each record in turn; a failure is recorded and skipped past."""
        outcomes = []
        for index, record in accepted:
            if cancel_token is not None and cancel_token.cancelled:
                print(f"[import] {resource}: cancelled before row {index}")
                break
            try:
                created = self.gateway.create(resource, record.to_row(), notify=False)
            except GatewayError as e:
                outcomes.append(RowOutcome(index, OutcomeKind.FAILED, reason=str(e)))
                continue
            outcomes.append(RowOutcome(index, OutcomeKind.INSERTED, record_id=str(created.get("id"))))
        return outcomes
