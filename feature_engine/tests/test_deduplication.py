import unittest

from feature_engine.db.repositories.feature_evidence import SqliteFeatureEvidenceRepository
from feature_engine.db.repositories.features import SqliteFeatureRepository
from feature_engine.errors import ProviderError
from feature_engine.models import Feature
from feature_engine.prompts import FeatureComparisonResponse
from feature_engine.services.confidence_scorer import ConfidenceScorer
from feature_engine.services.deduplication import DeduplicationEngine, choose_survivor
from feature_engine.tests.support import FAST_RETRY, FakeReasoningProvider, open_test_db, seed_evidence, seed_feature


def _duplicate(similarity: float = 0.9, recommended: str | None = None):
    def handler(prompt: str) -> dict:
        return {
            "is_duplicate": True,
            "similarity_score": similarity,
            "reasoning": "Both describe playback controls",
            "recommended_survivor": recommended,
        }

    return handler


class ChooseSurvivorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.low = Feature(id="a", name="A", confidenceScore=0.5, inferredAt="2026-01-01")
        self.high = Feature(id="b", name="B", confidenceScore=0.8, inferredAt="2026-01-02")

    def test_higher_confidence_wins_by_default(self) -> None:
        survivor, loser = choose_survivor(self.low, self.high)
        self.assertEqual((survivor.id, loser.id), ("b", "a"))

    def test_recommendation_wins_over_confidence(self) -> None:
        survivor, _ = choose_survivor(self.low, self.high, "feature1")
        self.assertEqual(survivor.id, "a")

    def test_ties_fall_back_to_age_then_id(self) -> None:
        first = Feature(id="z", name="Z", confidenceScore=0.5, inferredAt="2026-01-01")
        second = Feature(id="y", name="Y", confidenceScore=0.5, inferredAt="2026-01-02")
        self.assertEqual(choose_survivor(second, first)[0].id, "z")

        same_age = Feature(id="x", name="X", confidenceScore=0.5, inferredAt="2026-01-01")
        self.assertEqual(choose_survivor(first, same_age)[0].id, "x")

    def test_reviewed_feature_is_never_the_loser(self) -> None:
        reviewed = self.low.model_copy(update={"reviewedAt": "2026-02-01"})
        survivor, loser = choose_survivor(reviewed, self.high, "feature2")
        self.assertEqual((survivor.id, loser.id), ("a", "b"))

    def test_two_reviewed_features_are_not_merged(self) -> None:
        first = self.low.model_copy(update={"reviewedAt": "2026-02-01"})
        second = self.high.model_copy(update={"reviewedAt": "2026-02-01"})
        self.assertIsNone(choose_survivor(first, second))


class DeduplicationEngineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await open_test_db()
        self.features = SqliteFeatureRepository(self.db)
        self.links = SqliteFeatureEvidenceRepository(self.db)
        self.scorer = ConfidenceScorer(self.features, self.links)

        await seed_evidence(self.db, "e1", "endpoint", "POST /api/player/seek")
        await seed_evidence(self.db, "e2", "ui_element", "Seek bar")
        await seed_evidence(self.db, "e3", "requirement", "Users can change playback speed")
        await seed_feature(
            self.db, "fa", "Video Playback Controls", confidenceScore=0.6, inferredAt="2026-01-01T00:00:00+00:00"
        )
        await seed_feature(
            self.db, "fb", "Video Playback Speed", confidenceScore=0.7, inferredAt="2026-01-02T00:00:00+00:00"
        )
        await self.links.link_many("fa", ["e1", "e2"])
        await self.links.link_many("fb", ["e2", "e3"])

    async def asyncTearDown(self) -> None:
        await self.db.close()

    def _engine(self, reasoning: FakeReasoningProvider) -> DeduplicationEngine:
        return DeduplicationEngine(self.features, self.links, reasoning, self.scorer, retry_policy=FAST_RETRY)

    async def test_merges_duplicates_into_the_stronger_feature(self) -> None:
        reasoning = FakeReasoningProvider({FeatureComparisonResponse: _duplicate()})

        result = await self._engine(reasoning).validate_and_merge_duplicates()

        self.assertEqual(result.merged, 1)
        self.assertEqual(result.merges[0].survivorId, "fb")
        self.assertEqual(result.merges[0].mergedId, "fa")
        self.assertEqual(result.merges[0].movedLinks, 1)
        self.assertIsNone(await self.features.get_by_id("fa"))

        survivor = await self.features.get_by_id("fb")
        links = await self.links.list_for_feature("fb")
        self.assertEqual([link["evidence_id"] for link in links], ["e1", "e2", "e3"])
        self.assertIn('"id": "fa"', survivor["metadata_json"])
        self.assertAlmostEqual(survivor["confidence_score"], 0.685, delta=0.01)

    async def test_second_run_finds_nothing_to_merge(self) -> None:
        reasoning = FakeReasoningProvider({FeatureComparisonResponse: _duplicate()})
        engine = self._engine(reasoning)
        await engine.validate_and_merge_duplicates()

        again = await engine.validate_and_merge_duplicates()

        self.assertEqual(again.merged, 0)
        self.assertEqual(again.pairsShortlisted, 0)
        self.assertEqual(len(reasoning.calls), 1)

    async def test_children_of_the_merged_feature_become_roots(self) -> None:
        await seed_feature(self.db, "child", "Play button", featureType="task", parentId="fa")
        reasoning = FakeReasoningProvider({FeatureComparisonResponse: _duplicate()})

        await self._engine(reasoning).validate_and_merge_duplicates()

        self.assertIsNone((await self.features.get_by_id("child"))["parent_id"])

    async def test_recommended_survivor_is_kept(self) -> None:
        reasoning = FakeReasoningProvider({FeatureComparisonResponse: _duplicate(recommended="feature1")})

        result = await self._engine(reasoning).validate_and_merge_duplicates()

        self.assertEqual(result.merges[0].survivorId, "fa")
        self.assertIsNone(await self.features.get_by_id("fb"))

    async def test_low_similarity_is_not_merged(self) -> None:
        reasoning = FakeReasoningProvider({FeatureComparisonResponse: _duplicate(similarity=0.6)})

        result = await self._engine(reasoning).validate_and_merge_duplicates()

        self.assertEqual(result.pairsCompared, 1)
        self.assertEqual(result.merged, 0)
        self.assertIsNotNone(await self.features.get_by_id("fa"))

    async def test_reviewed_pair_is_left_alone(self) -> None:
        await self.features.mark_reviewed("fa", "candidate")
        await self.features.mark_reviewed("fb", "confirmed")
        reasoning = FakeReasoningProvider({FeatureComparisonResponse: _duplicate()})

        result = await self._engine(reasoning).validate_and_merge_duplicates()

        self.assertEqual(result.merged, 0)
        self.assertEqual(len(await self.features.list_all()), 2)

    async def test_name_filter_skips_unrelated_pairs(self) -> None:
        await self.db.execute("UPDATE features SET name = 'Payment Processing' WHERE id = 'fb'")
        await self.db.commit()
        reasoning = FakeReasoningProvider({FeatureComparisonResponse: _duplicate()})

        result = await self._engine(reasoning).validate_and_merge_duplicates()

        self.assertEqual(result.pairsShortlisted, 0)
        self.assertEqual(reasoning.calls, [])

    async def test_rejected_features_are_not_considered(self) -> None:
        await self.features.update_confidence("fb", 0.2, "rejected")
        reasoning = FakeReasoningProvider({FeatureComparisonResponse: _duplicate()})

        result = await self._engine(reasoning).validate_and_merge_duplicates()

        self.assertEqual(result.pairsShortlisted, 0)

    async def test_provider_failure_is_recorded(self) -> None:
        reasoning = FakeReasoningProvider(
            {FeatureComparisonResponse: lambda prompt: ProviderError("content filtered", kind="other")}
        )

        result = await self._engine(reasoning).validate_and_merge_duplicates()

        self.assertEqual(result.merged, 0)
        self.assertEqual(result.failures[0].unit, "fa:fb")

    async def test_merge_with_missing_feature_is_a_no_op(self) -> None:
        engine = self._engine(FakeReasoningProvider())
        self.assertIsNone(await engine.merge_features("fb", "missing"))
        self.assertIsNone(await engine.merge_features("fb", "fb"))


class DeduplicationChainTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await open_test_db()
        self.features = SqliteFeatureRepository(self.db)
        self.links = SqliteFeatureEvidenceRepository(self.db)
        self.scorer = ConfidenceScorer(self.features, self.links)

        await seed_evidence(self.db, "e1", "endpoint", "POST /api/player/seek")
        await seed_evidence(self.db, "e2", "ui_element", "Seek bar")
        await seed_evidence(self.db, "e3", "requirement", "Users can change playback speed")
        await seed_evidence(self.db, "e4", "payload", "{position: number}")
        await seed_feature(
            self.db, "ca", "Video Playback Controls", confidenceScore=0.3, inferredAt="2026-01-01T00:00:00+00:00"
        )
        await seed_feature(
            self.db, "cb", "Video Playback Speed", confidenceScore=0.3, inferredAt="2026-01-02T00:00:00+00:00"
        )
        await seed_feature(
            self.db, "cc", "Video Playback Options", confidenceScore=0.6, inferredAt="2026-01-03T00:00:00+00:00"
        )
        await self.links.link_many("ca", ["e1"])
        await self.links.link_many("cb", ["e2", "e3"])
        await self.links.link_many("cc", ["e4"])

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_later_pairs_see_scores_raised_by_earlier_merges(self) -> None:
        reasoning = FakeReasoningProvider({FeatureComparisonResponse: _duplicate()})
        engine = DeduplicationEngine(self.features, self.links, reasoning, self.scorer, retry_policy=FAST_RETRY)

        result = await engine.validate_and_merge_duplicates()

        self.assertEqual(
            [(merge.survivorId, merge.mergedId) for merge in result.merges],
            [("ca", "cb"), ("ca", "cc")],
        )
        self.assertEqual(len(reasoning.calls), 2)
        self.assertEqual([row["id"] for row in await self.features.list_all()], ["ca"])
        links = await self.links.list_for_feature("ca")
        self.assertEqual([link["evidence_id"] for link in links], ["e1", "e2", "e3", "e4"])
        self.assertGreater((await self.features.get_by_id("ca"))["confidence_score"], 0.6)


if __name__ == "__main__":
    unittest.main()
