"""Incremental reprocessing of a changed document."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from feature_engine import config
from feature_engine.errors import PipelineBusyError, ProviderError, ValidationError
from feature_engine.models import (
    BatchExtractionResult,
    EvidenceDraft,
    IncrementalExtractionResult,
    ReprocessReport,
    UnitFailure,
)
from feature_engine.observability import record_unit_failure, start_span
from feature_engine.providers.base import EvidenceExtractor, RunLock

logger = logging.getLogger("feature_engine.incremental")


def _evidence_key(evidence_type: str, content: str) -> tuple[str, str]:
    return evidence_type, " ".join((content or "").lower().split())


class IncrementalReprocessor:
    def __init__(
        self,
        evidence_repo: Any,
        link_repo: Any,
        document_repo: Any,
        updates: Any,
        run_lock: RunLock,
        *,
        extractor: EvidenceExtractor | None = None,
        lock_key: str = config.PIPELINE_LOCK_KEY,
    ):
        self.evidence_repo = evidence_repo
        self.link_repo = link_repo
        self.document_repo = document_repo
        self.updates = updates
        self.run_lock = run_lock
        self.extractor = extractor
        self.lock_key = lock_key

    async def _fresh_evidence(self, document_id: str, fresh: Sequence[EvidenceDraft] | None) -> list[EvidenceDraft]:
        if fresh is not None:
            return list(fresh)
        if self.extractor is None:
            raise ValidationError("No fresh evidence supplied and no extractor configured")
        return list(await self.extractor.extract(document_id))

    async def process_changed_document(
        self,
        document_id: str,
        fresh_evidence: Sequence[EvidenceDraft] | None = None,
    ) -> IncrementalExtractionResult:
        """Retire evidence the new extraction no longer produces and store what is new.

        Affected features are those linked to retired evidence; they are
        computed before anything is marked obsolete.
        """
        if not await self.document_repo.get_by_id(document_id):
            raise ValidationError(f"Document not found: {document_id}")

        drafts = await self._fresh_evidence(document_id, fresh_evidence)
        active = await self.evidence_repo.list_by_document(document_id)
        active_by_key: dict[tuple[str, str], list[str]] = {}
        for row in active:
            active_by_key.setdefault(_evidence_key(row["type"], row["content"]), []).append(str(row["id"]))
        fresh_keys = {_evidence_key(draft.type, draft.content) for draft in drafts}

        superseded = sorted(
            evidence_id
            for key, evidence_ids in active_by_key.items()
            if key not in fresh_keys
            for evidence_id in evidence_ids
        )
        affected = await self.link_repo.feature_ids_for_evidence(superseded)
        obsolete_count = await self.evidence_repo.mark_obsolete(superseded)

        new_ids: list[str] = []
        seen: set[tuple[str, str]] = set(active_by_key)
        now = datetime.now(timezone.utc).isoformat()
        for draft in drafts:
            key = _evidence_key(draft.type, draft.content)
            if key in seen:
                continue
            seen.add(key)
            evidence_id = str(uuid.uuid4())
            await self.evidence_repo.insert(
                {
                    "id": evidence_id,
                    "documentId": document_id,
                    "type": draft.type,
                    "content": draft.content,
                    "extractedAt": now,
                }
            )
            new_ids.append(evidence_id)

        logger.info(
            "Document %s: %s evidence obsolete, %s new, %s features affected",
            document_id, obsolete_count, len(new_ids), len(affected),
        )
        return IncrementalExtractionResult(
            documentId=document_id,
            obsoleteEvidenceCount=obsolete_count,
            newEvidenceCount=len(new_ids),
            newEvidenceIds=new_ids,
            affectedFeatureIds=affected,
        )

    async def batch_process_changed_documents(
        self,
        document_ids: Sequence[str],
        fresh_evidence: Mapping[str, Sequence[EvidenceDraft]] | None = None,
    ) -> BatchExtractionResult:
        """Run ``process_changed_document`` for each document in turn.

        A failing document is recorded and the remaining documents still run.
        """
        batch = BatchExtractionResult(totalDocuments=len(document_ids))
        for document_id in document_ids:
            drafts = fresh_evidence.get(document_id) if fresh_evidence is not None else None
            try:
                batch.results.append(await self.process_changed_document(document_id, drafts))
            except Exception as exc:
                logger.warning("Incremental extraction for document %s failed: %s", document_id, exc)
                batch.failures.append(
                    UnitFailure(unit=document_id, reason=str(exc), errorType=type(exc).__name__)
                )
                record_unit_failure("incremental", type(exc).__name__)
        logger.info(
            "Batch incremental extraction: %s of %s documents processed",
            len(batch.results), batch.totalDocuments,
        )
        return batch

    async def reprocess_document(
        self,
        document_id: str,
        fresh_evidence: Sequence[EvidenceDraft] | None = None,
        *,
        infer_new: bool = True,
    ) -> ReprocessReport:
        if not await self.run_lock.try_acquire(self.lock_key):
            raise PipelineBusyError(self.lock_key)
        try:
            with start_span("feature_engine.reprocess_document", {"document_id": document_id}):
                extraction = await self.process_changed_document(document_id, fresh_evidence)
                changes = await self.updates.update_affected_features(extraction.affectedFeatureIds)

                new_feature_ids: list[str] = []
                merged = 0
                if infer_new and extraction.newEvidenceCount:
                    try:
                        new_feature_ids = await self.updates.infer_features_from_new_evidence(document_id)
                    except ProviderError as exc:
                        logger.warning("Feature inference for document %s failed: %s", document_id, exc)
                    if new_feature_ids:
                        merged = await self.updates.merge_new_with_existing_features()

                version = await self.document_repo.increment_version(document_id)
        finally:
            await self.run_lock.release(self.lock_key)

        logger.info(
            "Reprocessed document %s (version %s): %s features updated, %s new, %s merged",
            document_id, version, len(changes.updatedFeatures), len(new_feature_ids), merged,
        )
        return ReprocessReport(
            documentId=document_id,
            documentVersion=version,
            extraction=extraction,
            changes=changes,
            newFeatureIds=new_feature_ids,
            featuresMerged=merged,
        )

    async def get_obsolete_evidence_stats(self, document_id: str | None = None) -> dict:
        if document_id is not None and not await self.document_repo.get_by_id(document_id):
            raise ValidationError(f"Document not found: {document_id}")
        return await self.evidence_repo.get_obsolete_stats(document_id)
