import unittest

from feature_engine.db.repositories.feature_evidence import SqliteFeatureEvidenceRepository
from feature_engine.db.repositories.features import SqliteFeatureRepository
from feature_engine.errors import ConsistencyError, ProviderError, ValidationError
from feature_engine.models import Evidence, EvidenceCluster
from feature_engine.prompts import FeatureHypothesisResponse
from feature_engine.services.hypothesis import FeatureHypothesisGenerator
from feature_engine.tests.support import FAST_RETRY, FakeReasoningProvider, open_test_db, seed_evidence

WATCHLIST = [
    Evidence(id="e1", documentId="doc-1", type="endpoint", content="POST /api/watchlist"),
    Evidence(id="e2", documentId="doc-1", type="ui_element", content="Add to watchlist button"),
    Evidence(id="e3", documentId="doc-1", type="requirement", content="Users can save movies for later"),
]


def _watchlist_hypothesis(prompt: str) -> dict:
    return {
        "feature_name": "Movie Watchlist",
        "description": "Save movies to watch later.",
        "confidence": 0.92,
        "reasoning": "Endpoint, button and requirement all concern saving movies.",
    }


class _FailingLinks:
    async def link_many(self, feature_id: str, evidence_ids) -> int:
        raise ConsistencyError(f"Evidence rows missing for {feature_id}")


class FeatureHypothesisGeneratorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await open_test_db()
        self.features = SqliteFeatureRepository(self.db)
        self.links = SqliteFeatureEvidenceRepository(self.db)
        for item in WATCHLIST:
            await seed_evidence(self.db, item.id, item.type, item.content)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    def _generator(self, reasoning: FakeReasoningProvider) -> FeatureHypothesisGenerator:
        return FeatureHypothesisGenerator(self.features, self.links, reasoning, retry_policy=FAST_RETRY)

    async def test_creates_unscored_candidate_linked_to_cluster(self) -> None:
        reasoning = FakeReasoningProvider({FeatureHypothesisResponse: _watchlist_hypothesis})

        feature = await self._generator(reasoning).generate_from_cluster(WATCHLIST)
        stored = await self.features.get_by_id(feature.id)
        links = await self.links.list_for_feature(feature.id)

        self.assertEqual(stored["name"], "Movie Watchlist")
        self.assertEqual(stored["status"], "candidate")
        self.assertEqual(stored["feature_type"], "task")
        self.assertIsNone(stored["confidence_score"])
        self.assertEqual(feature.metadata["reportedConfidence"], 0.92)
        self.assertEqual([link["evidence_id"] for link in links], ["e1", "e2", "e3"])
        self.assertIn("POST /api/watchlist", reasoning.calls[0][1])

    async def test_empty_cluster_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            await self._generator(FakeReasoningProvider()).generate_from_cluster([])

    async def test_malformed_response_is_retried(self) -> None:
        responses = [{"feature_name": "", "description": "x", "confidence": 0.5, "reasoning": "x"}]

        def handler(prompt: str) -> dict:
            return responses.pop(0) if responses else _watchlist_hypothesis(prompt)

        reasoning = FakeReasoningProvider({FeatureHypothesisResponse: handler})
        feature = await self._generator(reasoning).generate_from_cluster(WATCHLIST)

        self.assertEqual(feature.name, "Movie Watchlist")
        self.assertEqual(len(reasoning.calls), 2)

    async def test_failed_cluster_does_not_stop_the_others(self) -> None:
        await seed_evidence(self.db, "x1", "bug", "Crash when offline")

        def handler(prompt: str):
            if "Crash when offline" in prompt:
                return ProviderError("content filtered", kind="other")
            return _watchlist_hypothesis(prompt)

        clusters = [
            EvidenceCluster(clusterId=0, evidenceIds=["e1", "e2", "e3"], evidence=WATCHLIST),
            EvidenceCluster(
                clusterId=1,
                evidenceIds=["x1"],
                evidence=[Evidence(id="x1", documentId="doc-1", type="bug", content="Crash when offline")],
            ),
        ]

        report, feature_ids = await self._generator(
            FakeReasoningProvider({FeatureHypothesisResponse: handler})
        ).generate_for_clusters(clusters)

        self.assertEqual(report.attempted, 2)
        self.assertEqual(report.succeeded, 1)
        self.assertEqual(len(feature_ids), 1)
        self.assertEqual(report.failures[0].unit, "cluster-1")
        self.assertEqual(len(await self.features.list_all()), 1)

    async def test_feature_is_removed_when_linking_fails(self) -> None:
        reasoning = FakeReasoningProvider({FeatureHypothesisResponse: _watchlist_hypothesis})
        generator = FeatureHypothesisGenerator(
            self.features, _FailingLinks(), reasoning, retry_policy=FAST_RETRY
        )

        with self.assertRaises(ConsistencyError):
            await generator.generate_from_cluster(WATCHLIST)

        self.assertEqual(await self.features.list_all(), [])


if __name__ == "__main__":
    unittest.main()
