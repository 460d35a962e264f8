import unittest

from feature_engine.db.repositories.evidence import SqliteEvidenceRepository
from feature_engine.db.repositories.feature_evidence import SqliteFeatureEvidenceRepository
from feature_engine.models import Evidence
from feature_engine.services.clustering import ClusteringEngine, cluster_evidence
from feature_engine.tests.support import open_test_db, seed_evidence, seed_feature


def _evidence(evidence_id: str, embedding: list[float] | None) -> Evidence:
    return Evidence(id=evidence_id, documentId="doc-1", type="requirement", content=evidence_id, embedding=embedding)


PLAYBACK = [
    _evidence("a1", [1.0, 0.0, 0.0]),
    _evidence("a2", [0.99, 0.05, 0.0]),
    _evidence("a3", [0.98, 0.0, 0.05]),
]
LOGIN = [
    _evidence("b1", [0.0, 1.0, 0.0]),
    _evidence("b2", [0.05, 0.99, 0.0]),
    _evidence("b3", [0.0, 0.98, 0.05]),
]
STRAY = _evidence("c1", [0.0, 0.0, 1.0])


class ClusterEvidenceTests(unittest.TestCase):
    def test_groups_dense_regions_and_marks_noise(self) -> None:
        result = cluster_evidence([*LOGIN, STRAY, *PLAYBACK], eps=0.3, min_points=3)

        self.assertEqual([c.evidenceIds for c in result.clusters], [["a1", "a2", "a3"], ["b1", "b2", "b3"]])
        self.assertEqual([c.clusterId for c in result.clusters], [0, 1])
        self.assertEqual(result.noiseEvidenceIds, ["c1"])
        self.assertEqual(result.consideredCount, 7)

    def test_deterministic_under_input_order(self) -> None:
        forward = cluster_evidence([*PLAYBACK, *LOGIN, STRAY])
        backward = cluster_evidence(list(reversed([*PLAYBACK, *LOGIN, STRAY])))
        self.assertEqual(forward.model_dump(), backward.model_dump())

    def test_centroid_is_member_mean(self) -> None:
        result = cluster_evidence(PLAYBACK)
        centroid = result.clusters[0].centroid
        self.assertAlmostEqual(centroid[0], (1.0 + 0.99 + 0.98) / 3)
        self.assertAlmostEqual(centroid[1], 0.05 / 3)
        self.assertEqual(result.clusters[0].size, 3)

    def test_fewer_items_than_min_points_are_all_noise(self) -> None:
        result = cluster_evidence(PLAYBACK[:2], min_points=3)
        self.assertEqual(result.clusters, [])
        self.assertEqual(result.noiseEvidenceIds, ["a1", "a2"])

    def test_unembedded_items_are_not_considered(self) -> None:
        result = cluster_evidence([*PLAYBACK, _evidence("z9", None)])
        self.assertEqual(result.consideredCount, 3)
        self.assertNotIn("z9", result.noiseEvidenceIds)

    def test_empty_input(self) -> None:
        result = cluster_evidence([])
        self.assertEqual(result.clusters, [])
        self.assertEqual(result.consideredCount, 0)


class ClusteringEngineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await open_test_db()

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_only_unlinked_active_evidence_is_clustered(self) -> None:
        for item in PLAYBACK:
            await seed_evidence(self.db, item.id, "requirement", item.id, embedding=item.embedding)
        await seed_evidence(self.db, "a4", "requirement", "linked", embedding=[1.0, 0.01, 0.0])
        await seed_evidence(self.db, "a5", "requirement", "stale", embedding=[1.0, 0.02, 0.0])
        await seed_evidence(self.db, "a6", "requirement", "no vector")
        await seed_feature(self.db, "f1", "Playback")
        await SqliteFeatureEvidenceRepository(self.db).link_many("f1", ["a4"])
        await SqliteEvidenceRepository(self.db).mark_obsolete(["a5"])

        result = await ClusteringEngine(SqliteEvidenceRepository(self.db)).cluster_unclustered()

        self.assertEqual(result.consideredCount, 3)
        self.assertEqual(result.clusters[0].evidenceIds, ["a1", "a2", "a3"])


if __name__ == "__main__":
    unittest.main()
