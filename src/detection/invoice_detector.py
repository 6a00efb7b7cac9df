# src/detection/invoice_detector.py — v1
"""Stage 2: semantic invoice-level duplicate detection.

Flow per extraction:
  1. Build the fingerprint; with no usable field at all, answer "unique"
     without touching the store
  2. Look up earlier extractions with the same fingerprint digest; when one
     scores "exact" the fuzzy pass is skipped
  3. Otherwise fetch tenant-scoped candidates (already-superseded duplicates
     excluded), score against every one and keep the best match
  4. Classify, then record fingerprint, link and status as one atomic unit
  5. Return the verdict

Two concurrent checks of mutual duplicates in one tenant can both come back
"unique" if neither has recorded its fingerprint yet. That race is accepted;
a later re-scan reconciles it. No lock is taken.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Mapping

from docdedup.core.errors import InputError, StorageError
from docdedup.core.models import (
    DuplicateCandidateLink,
    ExtractionRecord,
    FieldScores,
    InvoiceDuplicateResult,
    InvoiceFingerprint,
    utc_now,
)
from docdedup.fingerprint.builder import FingerprintBuilder, fingerprint_digest
from docdedup.scoring.classifier import ConfidenceClassifier, ConfidenceThresholds
from docdedup.scoring.similarity import FieldWeights, SimilarityScorer

if TYPE_CHECKING:
    from docdedup.config.settings import Settings
    from docdedup.store.base_record_store import BaseRecordStore

logger = logging.getLogger(__name__)

CHECK_FAILED = "duplicate-check failed"


class InvoiceDuplicateDetector:
    """Candidate retrieval, scoring and classification for one extraction."""

    def __init__(
        self,
        record_store: BaseRecordStore,
        builder: FingerprintBuilder | None = None,
        scorer: SimilarityScorer | None = None,
        classifier: ConfidenceClassifier | None = None,
        candidate_limit: int | None = None,
        candidate_max_age_days: int | None = None,
    ) -> None:
        self._store = record_store
        self._builder = builder or FingerprintBuilder()
        self._scorer = scorer or SimilarityScorer()
        self._classifier = classifier or ConfidenceClassifier()
        self._candidate_limit = candidate_limit
        self._candidate_max_age_days = candidate_max_age_days

    @classmethod
    def from_settings(
        cls, record_store: BaseRecordStore, settings: Settings
    ) -> InvoiceDuplicateDetector:
        """Wire builder, scorer and classifier from configuration."""
        return cls(
            record_store=record_store,
            builder=FingerprintBuilder(default_currency=settings.default_currency),
            scorer=SimilarityScorer(
                weights=FieldWeights(**settings.weights),
                date_tolerance_days=settings.date_tolerance_days,
                amount_tolerance=settings.amount_tolerance,
            ),
            classifier=ConfidenceClassifier(
                ConfidenceThresholds(
                    exact=settings.threshold_exact,
                    likely=settings.threshold_likely,
                    possible=settings.threshold_possible,
                )
            ),
            candidate_limit=settings.candidate_limit,
            candidate_max_age_days=settings.candidate_max_age_days,
        )

    async def check_invoice_duplicate(
        self,
        extraction_id: str,
        extracted_fields: Mapping[str, Any] | None,
        tenant_id: str,
    ) -> InvoiceDuplicateResult:
        """Classify *extraction_id* against prior extractions of *tenant_id*.

        Raises:
            StorageError: If candidates cannot be read or the verdict cannot
                be recorded. A failed check is never reported as unique.
        """
        fingerprint = self._builder.build(extracted_fields, extraction_id, tenant_id)
        if fingerprint.is_empty:
            logger.info(
                "Extraction %s has no usable invoice fields, classified unique",
                extraction_id,
            )
            return InvoiceDuplicateResult(
                is_duplicate=False,
                duplicate_type="unique",
                confidence=0.0,
                extraction_id=extraction_id,
                tenant_id=tenant_id,
            )

        digest = fingerprint_digest(fingerprint)
        candidates = await self._fetch_digest_matches(fingerprint, digest)
        best, best_scores = self._best_match(fingerprint, candidates)
        if best_scores is None or self._classifier.classify(best_scores.overall) != "exact":
            candidates = await self._fetch_candidates(fingerprint)
            best, best_scores = self._best_match(fingerprint, candidates)

        confidence = best_scores.overall if best_scores is not None else 0.0
        duplicate_type = self._classifier.classify(confidence)
        is_duplicate = duplicate_type != "unique"

        verdict = InvoiceDuplicateResult(
            is_duplicate=is_duplicate,
            duplicate_type=duplicate_type,
            duplicate_candidate_id=best.extraction_id if is_duplicate and best else None,
            confidence=confidence,
            extraction_id=extraction_id,
            tenant_id=tenant_id,
            fingerprint_digest=digest,
            field_scores=best_scores,
            candidates_checked=len(candidates),
        )
        logger.info(
            "Invoice check for %s: %s", extraction_id, duplicate_type,
            extra={
                "data": {
                    "confidence": confidence,
                    "candidate": verdict.duplicate_candidate_id,
                    "scored": len(candidates),
                }
            },
        )

        await self.record_verdict(verdict, fingerprint)
        return verdict

    async def record_verdict(
        self,
        verdict: InvoiceDuplicateResult,
        fingerprint: InvoiceFingerprint | None = None,
    ) -> None:
        """Persist fingerprint, candidate link and status in one transaction.

        A verdict at or above "possible" must name its candidate, so a
        duplicate status is never written without its link.

        Raises:
            InputError: If a duplicate verdict has no candidate, or no
                fingerprint is given and none is stored for the extraction.
                Nothing is written in either case.
            StorageError: If any write fails; nothing is kept in that case.
        """
        requires_link = self._classifier.requires_link(verdict.duplicate_type)
        if requires_link and not verdict.duplicate_candidate_id:
            raise InputError(
                f"{verdict.duplicate_type} verdict for {verdict.extraction_id} "
                "has no duplicate_candidate_id",
                "duplicate_candidate_id",
            )

        status = self._classifier.to_status(verdict.duplicate_type)
        link = None
        if requires_link:
            link = DuplicateCandidateLink(
                extraction_id=verdict.extraction_id,
                candidate_extraction_id=verdict.duplicate_candidate_id,  # type: ignore[arg-type]
                tenant_id=verdict.tenant_id,
                similarity_score=verdict.confidence,
                duplicate_type=verdict.duplicate_type,
            )

        try:
            async with self._store.transaction():
                if fingerprint is None:
                    if await self._store.get_extraction(verdict.extraction_id) is None:
                        raise InputError(
                            f"No fingerprint recorded for {verdict.extraction_id}",
                            "extraction_id",
                        )
                else:
                    await self._store.save_fingerprint(
                        fingerprint,
                        verdict.fingerprint_digest or fingerprint_digest(fingerprint),
                    )
                if link is not None:
                    await self._store.save_duplicate_link(link)
                await self._store.update_extraction_duplicate_status(
                    verdict.extraction_id,
                    status,
                    verdict.duplicate_candidate_id,
                    verdict.confidence,
                )
        except InputError:
            raise
        except Exception as e:
            logger.error(
                "Recording verdict for extraction %s failed", verdict.extraction_id,
                exc_info=True,
            )
            raise StorageError(
                f"{CHECK_FAILED}: could not record verdict for {verdict.extraction_id}",
                operation="record_verdict",
            ) from e

    async def get_duplicate_chain(self, extraction_id: str) -> list[ExtractionRecord]:
        """Follow candidate pointers back to the original, oldest first."""
        chain: list[ExtractionRecord] = []
        seen: set[str] = set()
        current_id: str | None = extraction_id
        tenant_id: str | None = None
        try:
            while current_id is not None and current_id not in seen:
                seen.add(current_id)
                record = await self._store.get_extraction(current_id)
                if record is None:
                    break
                if tenant_id is None:
                    tenant_id = record.tenant_id
                elif record.tenant_id != tenant_id:
                    logger.warning(
                        "Duplicate chain of %s crosses tenants at %s, stopping",
                        extraction_id, current_id,
                    )
                    break
                chain.append(record)
                current_id = record.duplicate_candidate_id
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(
                f"duplicate chain lookup failed for {extraction_id}: {e}",
                operation="get_extraction",
            ) from e
        chain.reverse()
        return chain

    def _best_match(
        self, fingerprint: InvoiceFingerprint, candidates: list[InvoiceFingerprint]
    ) -> tuple[InvoiceFingerprint | None, FieldScores | None]:
        # Strictly greater, so ties go to the oldest candidate
        best: InvoiceFingerprint | None = None
        best_scores: FieldScores | None = None
        for candidate in candidates:
            scores = self._scorer.score_breakdown(candidate, fingerprint)
            if best_scores is None or scores.overall > best_scores.overall:
                best, best_scores = candidate, scores
        return best, best_scores

    async def _fetch_digest_matches(
        self, fingerprint: InvoiceFingerprint, digest: str
    ) -> list[InvoiceFingerprint]:
        try:
            matches = await self._store.find_by_fingerprint_digest(
                fingerprint.tenant_id, digest, fingerprint.extraction_id
            )
        except Exception as e:
            logger.error(
                "Digest lookup failed for extraction %s",
                fingerprint.extraction_id, exc_info=True,
            )
            raise StorageError(
                f"{CHECK_FAILED}: digest lookup for {fingerprint.extraction_id}",
                operation="find_by_fingerprint_digest",
            ) from e
        return _same_tenant(fingerprint, matches)

    async def _fetch_candidates(
        self, fingerprint: InvoiceFingerprint
    ) -> list[InvoiceFingerprint]:
        since = None
        if self._candidate_max_age_days is not None:
            since = utc_now() - timedelta(days=self._candidate_max_age_days)
        try:
            candidates = await self._store.find_fingerprint_candidates(
                fingerprint.tenant_id,
                fingerprint.extraction_id,
                limit=self._candidate_limit,
                since=since,
            )
        except Exception as e:
            logger.error(
                "Candidate retrieval failed for extraction %s",
                fingerprint.extraction_id, exc_info=True,
            )
            raise StorageError(
                f"{CHECK_FAILED}: candidate retrieval for {fingerprint.extraction_id}",
                operation="find_fingerprint_candidates",
            ) from e

        return _same_tenant(fingerprint, candidates)


def _same_tenant(
    fingerprint: InvoiceFingerprint, candidates: list[InvoiceFingerprint]
) -> list[InvoiceFingerprint]:
    # Never compare across tenants, whatever the store returned
    return [
        c for c in candidates
        if c.tenant_id == fingerprint.tenant_id
        and c.extraction_id != fingerprint.extraction_id
    ]
