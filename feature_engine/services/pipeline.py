"""Full inference run: embed, cluster, hypothesize, merge, structure, score, relate."""
from __future__ import annotations

import logging
import time
from typing import Any

from feature_engine import config
from feature_engine.errors import PipelineBusyError
from feature_engine.models import PipelineSummary, StageReport
from feature_engine.observability import record_stage, start_span
from feature_engine.providers.base import RunLock

logger = logging.getLogger("feature_engine.pipeline")


class FeatureInferencePipeline:
    def __init__(
        self,
        *,
        embedder: Any,
        clustering: Any,
        hypothesis: Any,
        dedup: Any,
        hierarchy: Any,
        scorer: Any,
        relationships: Any,
        run_lock: RunLock,
        lock_key: str = config.PIPELINE_LOCK_KEY,
    ):
        self.embedder = embedder
        self.clustering = clustering
        self.hypothesis = hypothesis
        self.dedup = dedup
        self.hierarchy = hierarchy
        self.scorer = scorer
        self.relationships = relationships
        self.run_lock = run_lock
        self.lock_key = lock_key

    def _finish(self, summary: PipelineSummary, report: StageReport, started: float) -> StageReport:
        report.durationMs = round((time.perf_counter() - started) * 1000.0, 2)
        summary.stages[report.stage] = report
        record_stage(report.stage, report.attempted, report.succeeded, report.durationMs)
        logger.info(
            "Stage %s: %s/%s succeeded (%s failures) in %.0fms",
            report.stage, report.succeeded, report.attempted, report.failed, report.durationMs,
        )
        return report

    async def run_full_pipeline(self) -> PipelineSummary:
        """Run every stage once under the pipeline lock.

        Raises PipelineBusyError immediately if another run holds the lock.
        """
        if not await self.run_lock.try_acquire(self.lock_key):
            logger.info("Pipeline run rejected: lock '%s' is held", self.lock_key)
            raise PipelineBusyError(self.lock_key)

        summary = PipelineSummary()
        try:
            with start_span("feature_engine.run_full_pipeline"):
                await self._run_stages(summary)
        except Exception:
            logger.exception("Pipeline run aborted")
            raise
        finally:
            await self.run_lock.release(self.lock_key)

        logger.info("Pipeline run complete: %s", summary.as_counts())
        return summary

    async def _run_stages(self, summary: PipelineSummary) -> None:
        started = time.perf_counter()
        report = self._finish(summary, await self.embedder.embed_missing(), started)
        summary.embeddingsGenerated = report.succeeded

        started = time.perf_counter()
        clustering = await self.clustering.cluster_unclustered()
        report = self._finish(
            summary,
            StageReport(stage="cluster", attempted=clustering.consideredCount, succeeded=len(clustering.clusters)),
            started,
        )
        summary.clustersFound = len(clustering.clusters)

        started = time.perf_counter()
        report, feature_ids = await self.hypothesis.generate_for_clusters(clustering.clusters)
        self._finish(summary, report, started)
        summary.featuresGenerated = len(feature_ids)

        started = time.perf_counter()
        dedup = await self.dedup.validate_and_merge_duplicates()
        self._finish(
            summary,
            StageReport(
                stage="deduplicate",
                attempted=dedup.pairsShortlisted,
                succeeded=dedup.pairsCompared,
                failures=dedup.failures,
            ),
            started,
        )
        summary.featuresMerged = dedup.merged

        started = time.perf_counter()
        hierarchy = await self.hierarchy.build()
        self._finish(
            summary,
            StageReport(
                stage="hierarchy",
                attempted=hierarchy.relationships + hierarchy.rejected,
                succeeded=hierarchy.relationships,
                failures=hierarchy.failures,
            ),
            started,
        )
        summary.hierarchyDetected = hierarchy.relationships

        started = time.perf_counter()
        report = self._finish(summary, await self.scorer.calculate_for_all_features(), started)
        summary.confidenceScored = report.succeeded

        started = time.perf_counter()
        report, links_classified = await self.relationships.classify_all()
        self._finish(summary, report, started)
        summary.relationshipsBuilt = links_classified
