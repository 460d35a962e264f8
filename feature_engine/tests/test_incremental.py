import unittest

from feature_engine.db.repositories import (
    InProcessRunLock,
    SqliteDocumentRepository,
    SqliteEvidenceRepository,
    SqliteFeatureEvidenceRepository,
    SqliteFeatureRepository,
)
from feature_engine.errors import PipelineBusyError, ProviderError, ValidationError
from feature_engine.models import EvidenceDraft
from feature_engine.prompts import FeatureHypothesisResponse
from feature_engine.runtime import build_engine
from feature_engine.tests.support import (
    FAST_RETRY,
    FakeEmbeddingProvider,
    FakeReasoningProvider,
    open_test_db,
    seed_document,
    seed_evidence,
    seed_feature,
)

LOCK_KEY = "feature-inference-pipeline"


def _sharing_hypothesis(prompt: str) -> dict:
    return {
        "feature_name": "Watchlist Sharing",
        "description": "Share a watchlist with friends.",
        "confidence": 0.7,
        "reasoning": "New flow describes sharing.",
    }


class _StaticExtractor:
    def __init__(self, drafts: list[EvidenceDraft]):
        self.drafts = drafts
        self.documents: list[str] = []

    async def extract(self, document_id: str) -> list[EvidenceDraft]:
        self.documents.append(document_id)
        return self.drafts


class IncrementalReprocessorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await open_test_db()
        self.features = SqliteFeatureRepository(self.db)
        self.evidence = SqliteEvidenceRepository(self.db)
        self.links = SqliteFeatureEvidenceRepository(self.db)
        self.documents = SqliteDocumentRepository(self.db)
        self.lock = InProcessRunLock()
        self.reasoning = FakeReasoningProvider({FeatureHypothesisResponse: _sharing_hypothesis})
        self.engine = build_engine(
            self.db,
            embedding_provider=FakeEmbeddingProvider({}),
            reasoning_provider=self.reasoning,
            run_lock=self.lock,
            retry_policy=FAST_RETRY,
        )

        await seed_document(self.db, "doc-1")
        await seed_evidence(self.db, "e1", "endpoint", "POST /api/watchlist")
        await seed_evidence(self.db, "e2", "ui_element", "Add to watchlist button")
        await seed_evidence(self.db, "e3", "requirement", "Users can save movies")
        await seed_feature(self.db, "f1", "Movie Watchlist")
        await self.links.link_many("f1", ["e1", "e2", "e3"])
        await self.engine.scorer.calculate_for_feature("f1")

        self.fresh = [
            EvidenceDraft(type="ui_element", content="Add to watchlist button"),
            EvidenceDraft(type="requirement", content="  users can   SAVE movies "),
            EvidenceDraft(type="flow", content="Share watchlist with friends"),
        ]

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_process_changed_document_retires_missing_evidence(self) -> None:
        result = await self.engine.reprocessor.process_changed_document("doc-1", self.fresh)

        self.assertEqual(result.obsoleteEvidenceCount, 1)
        self.assertEqual(result.newEvidenceCount, 1)
        self.assertEqual(result.affectedFeatureIds, ["f1"])
        self.assertTrue((await self.evidence.get_by_id("e1"))["obsolete"])
        self.assertFalse((await self.evidence.get_by_id("e3"))["obsolete"])
        new_row = await self.evidence.get_by_id(result.newEvidenceIds[0])
        self.assertEqual((new_row["type"], new_row["document_id"]), ("flow", "doc-1"))

    async def test_unchanged_document_changes_nothing(self) -> None:
        same = [
            EvidenceDraft(type="endpoint", content="POST /api/watchlist"),
            EvidenceDraft(type="ui_element", content="Add to watchlist button"),
            EvidenceDraft(type="requirement", content="Users can save movies"),
        ]

        result = await self.engine.reprocessor.process_changed_document("doc-1", same)

        self.assertEqual((result.obsoleteEvidenceCount, result.newEvidenceCount), (0, 0))
        self.assertEqual(result.affectedFeatureIds, [])

    async def test_reprocess_rescores_and_reports_status_changes(self) -> None:
        report = await self.engine.reprocessor.reprocess_document("doc-1", self.fresh)

        self.assertEqual(report.documentVersion, 2)
        self.assertEqual(report.changes.removedLinks, 1)
        self.assertEqual(report.changes.statusChanges, {"toConfirmed": 0, "toCandidate": 0, "toRejected": 1})
        update = report.changes.updatedFeatures[0]
        self.assertEqual((update.previousStatus, update.status), ("candidate", "rejected"))
        self.assertTrue(update.statusChanged)
        self.assertLess(update.confidenceChange, 0)

        remaining = await self.links.list_for_feature("f1", include_obsolete=True)
        self.assertEqual([link["evidence_id"] for link in remaining], ["e2", "e3"])

        self.assertEqual(len(report.newFeatureIds), 1)
        new_links = await self.links.list_for_feature(report.newFeatureIds[0])
        self.assertEqual([link["evidence_type"] for link in new_links], ["flow"])
        self.assertEqual(report.featuresMerged, 0)
        self.assertTrue(await self.lock.try_acquire(LOCK_KEY))

    async def test_inference_failure_does_not_abort_reprocessing(self) -> None:
        self.reasoning.handlers[FeatureHypothesisResponse] = lambda prompt: ProviderError("down", kind="other")

        report = await self.engine.reprocessor.reprocess_document("doc-1", self.fresh)

        self.assertEqual(report.newFeatureIds, [])
        self.assertEqual(report.documentVersion, 2)
        self.assertEqual(report.changes.statusChanges["toRejected"], 1)

    async def test_busy_lock_rejects_reprocessing(self) -> None:
        await self.lock.try_acquire(LOCK_KEY)

        with self.assertRaises(PipelineBusyError):
            await self.engine.reprocessor.reprocess_document("doc-1", self.fresh)

        self.assertFalse((await self.evidence.get_by_id("e1"))["obsolete"])
        self.assertEqual((await self.documents.get_by_id("doc-1"))["version"], 1)

    async def test_unknown_document_releases_the_lock(self) -> None:
        with self.assertRaises(ValidationError):
            await self.engine.reprocessor.reprocess_document("missing", self.fresh)

        self.assertTrue(await self.lock.try_acquire(LOCK_KEY))

    async def test_extractor_supplies_fresh_evidence(self) -> None:
        extractor = _StaticExtractor(self.fresh)
        engine = build_engine(
            self.db,
            embedding_provider=FakeEmbeddingProvider({}),
            reasoning_provider=self.reasoning,
            run_lock=InProcessRunLock(),
            extractor=extractor,
            retry_policy=FAST_RETRY,
        )

        result = await engine.reprocessor.process_changed_document("doc-1")

        self.assertEqual(extractor.documents, ["doc-1"])
        self.assertEqual(result.obsoleteEvidenceCount, 1)

    async def test_missing_evidence_source(self) -> None:
        with self.assertRaises(ValidationError):
            await self.engine.reprocessor.process_changed_document("doc-1")

    async def test_obsolete_stats(self) -> None:
        await self.engine.reprocessor.process_changed_document("doc-1", self.fresh)

        stats = await self.engine.reprocessor.get_obsolete_evidence_stats()

        self.assertEqual(
            stats,
            {"totalEvidence": 4, "obsoleteEvidence": 1, "activeEvidence": 3, "documentsWithObsolete": 1},
        )

    async def test_obsolete_stats_for_one_document(self) -> None:
        await seed_document(self.db, "doc-2", "pricing.pdf")
        await seed_evidence(self.db, "p1", "endpoint", "GET /api/plans", document_id="doc-2")
        await self.engine.reprocessor.process_changed_document("doc-1", self.fresh)

        doc1 = await self.engine.reprocessor.get_obsolete_evidence_stats("doc-1")
        doc2 = await self.engine.reprocessor.get_obsolete_evidence_stats("doc-2")

        self.assertEqual(
            doc1,
            {"totalEvidence": 4, "obsoleteEvidence": 1, "activeEvidence": 3, "documentsWithObsolete": 1},
        )
        self.assertEqual(
            doc2,
            {"totalEvidence": 1, "obsoleteEvidence": 0, "activeEvidence": 1, "documentsWithObsolete": 0},
        )
        with self.assertRaises(ValidationError):
            await self.engine.reprocessor.get_obsolete_evidence_stats("missing")

    async def test_batch_continues_past_a_failing_document(self) -> None:
        await seed_document(self.db, "doc-2", "pricing.pdf")
        await seed_evidence(self.db, "p1", "endpoint", "GET /api/plans", document_id="doc-2")
        fresh = {
            "doc-1": self.fresh,
            "doc-2": [EvidenceDraft(type="endpoint", content="GET /api/plans")],
        }

        batch = await self.engine.reprocessor.batch_process_changed_documents(
            ["doc-1", "missing", "doc-2"], fresh
        )

        self.assertEqual(batch.totalDocuments, 3)
        self.assertEqual([result.documentId for result in batch.results], ["doc-1", "doc-2"])
        self.assertEqual(batch.results[0].obsoleteEvidenceCount, 1)
        self.assertEqual(batch.results[1].obsoleteEvidenceCount, 0)
        self.assertEqual(len(batch.failures), 1)
        self.assertEqual((batch.failures[0].unit, batch.failures[0].errorType), ("missing", "ValidationError"))
        self.assertTrue((await self.evidence.get_by_id("e1"))["obsolete"])

    async def test_batch_uses_the_extractor_when_no_evidence_is_given(self) -> None:
        extractor = _StaticExtractor(self.fresh)
        engine = build_engine(
            self.db,
            embedding_provider=FakeEmbeddingProvider({}),
            reasoning_provider=self.reasoning,
            run_lock=InProcessRunLock(),
            extractor=extractor,
            retry_policy=FAST_RETRY,
        )

        batch = await engine.reprocessor.batch_process_changed_documents(["doc-1"])

        self.assertEqual(extractor.documents, ["doc-1"])
        self.assertEqual(batch.failures, [])
        self.assertEqual(batch.results[0].newEvidenceCount, 1)


class FeatureUpdateServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await open_test_db()
        self.engine = build_engine(
            self.db,
            embedding_provider=FakeEmbeddingProvider({}),
            reasoning_provider=FakeReasoningProvider(),
            run_lock=InProcessRunLock(),
            retry_policy=FAST_RETRY,
        )

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_unknown_features_are_reported_not_raised(self) -> None:
        notification = await self.engine.updates.update_affected_features(["missing"])

        self.assertEqual(notification.totalFeatures, 1)
        self.assertEqual(notification.failures[0].unit, "missing")
        self.assertEqual(notification.updatedFeatures, [])

    async def test_score_drift_without_status_change(self) -> None:
        for evidence_id, evidence_type in (("e1", "endpoint"), ("e2", "endpoint"), ("e3", "payload")):
            await seed_evidence(self.db, evidence_id, evidence_type, evidence_id)
        await seed_feature(self.db, "f1", "Checkout")
        await SqliteFeatureEvidenceRepository(self.db).link_many("f1", ["e1", "e2", "e3"])
        await self.engine.scorer.calculate_for_feature("f1")
        await SqliteEvidenceRepository(self.db).mark_obsolete(["e2"])

        notification = await self.engine.updates.update_affected_features(["f1"])

        update = notification.updatedFeatures[0]
        self.assertEqual(update.previousConfidence, 0.69)
        self.assertEqual(update.newConfidence, 0.61)
        self.assertEqual(update.confidenceChange, -0.08)
        self.assertFalse(update.statusChanged)
        self.assertEqual(notification.statusChanges, {"toConfirmed": 0, "toCandidate": 0, "toRejected": 0})

    async def test_no_new_evidence_infers_nothing(self) -> None:
        self.assertEqual(await self.engine.updates.infer_features_from_new_evidence("doc-1"), [])


if __name__ == "__main__":
    unittest.main()
