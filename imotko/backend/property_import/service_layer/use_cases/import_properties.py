# property_import/service_layer/use_cases/import_properties.py
from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...adapters.clients.completion import OpenAICompletionService, RateLimitedCompletion
from ...adapters.clients.feed import FeedClient
from ...adapters.clients.object_storage import SupabaseStorage
from ...adapters.clients.resilience import Sleep
from ...adapters.repos.import_runs import ImportRunRepository
from ...config import Settings, settings, validate_import_settings
from ...domain.source import validate_source_records
from ...domain.types import SourceRecord
from ...errors import (
    ListingValidationError,
    ModelCallError,
    ModelParseError,
    StoreUnavailableError,
)
from ...models import RunStatus
from ..geocoding import GeocodeResolver
from ..identity import ExternalIdentity
from ..images import ImagePipeline
from ..mapper import PropertyMapper
from ..normalizer import TextNormalizer

log = logging.getLogger(__name__)

CANCELLED = "cancelled"

# per-listing terminal states
PERSISTED = "persisted"
DUPLICATE = "duplicate"
FAILED = "failed"


@dataclass
class RunStats:
    total: int = 0
    processed: int = 0
    created: int = 0
    duplicates: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class RunSummary:
    execution_id: int | None
    triggered_by: str
    status: RunStatus
    started_at: datetime
    duration_ms: int
    stats: RunStats
    cancelled: bool = False
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "triggered_by": self.triggered_by,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.duration_ms,
            "stats": self.stats.as_dict(),
            "cancelled": self.cancelled,
            "error": self.error,
        }


@dataclass
class ImportPipeline:
    """The per-process collaborators of a run. Built once, reused across runs."""
    feed: FeedClient
    identity: ExternalIdentity
    normalizer: TextNormalizer
    geocoder: GeocodeResolver
    images: ImagePipeline
    mapper: PropertyMapper


def build_pipeline(
    session_maker: async_sessionmaker[AsyncSession],
    http_client: httpx.AsyncClient,
    s: Settings = settings,
) -> ImportPipeline:
    # one limiter/gateway for both the normalizer and the geocoder
    completion = RateLimitedCompletion.from_settings(OpenAICompletionService.from_settings(s), s)
    normalizer = TextNormalizer(completion)
    return ImportPipeline(
        feed=FeedClient.from_settings(s, http_client=http_client),
        identity=ExternalIdentity(session_maker, normalizer),
        normalizer=normalizer,
        geocoder=GeocodeResolver(completion, session_maker),
        images=ImagePipeline.from_settings(http_client, SupabaseStorage.from_settings(http_client, s), s),
        mapper=PropertyMapper.from_settings(session_maker, s),
    )


def _chunks(items: list[SourceRecord], size: int) -> list[list[SourceRecord]]:
    size = max(1, size)
    return [items[i : i + size] for i in range(0, len(items), size)]


class ImportOrchestrator:
    """
    One import run:

      1) validate configuration (fatal)
      2) fetch the feed (fatal) and drop malformed entries
      3) per listing: identify -> duplicate? -> normalize -> geocode -> images -> map -> persist
      4) record the run in the ledger

    Per-listing failures are counted and never stop the loop.
    Only configuration, feed and store failures abort a run.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        pipeline: ImportPipeline | None = None,
        http_client: httpx.AsyncClient | None = None,
        s: Settings = settings,
        sleep: Sleep = asyncio.sleep,
    ):
        self.session_maker = session_maker
        self.pipeline = pipeline
        self.settings = s
        self._http = http_client
        self._owns_http = False
        self._sleep = sleep

    def _get_pipeline(self) -> ImportPipeline:
        # built lazily so a missing credential fails the run instead of construction
        if self.pipeline is None:
            if self._http is None:
                self._http = httpx.AsyncClient()
                self._owns_http = True
            self.pipeline = build_pipeline(self.session_maker, self._http, self.settings)
        return self.pipeline

    async def aclose(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
            self._owns_http = False

    # -------------------------
    # Ledger (never masks the run outcome)
    # -------------------------

    async def _ledger_start(self, triggered_by: str) -> int | None:
        try:
            async with self.session_maker() as session:
                run = await ImportRunRepository(session).start_run(
                    triggered_by,
                    meta={"test_mode": self.settings.IMPORT_TEST_MODE},
                )
                await session.commit()
                return run.id
        except Exception as e:
            log.error("Could not record import run start: %s", e)
            return None

    async def _ledger_finish(self, execution_id: int | None, summary: RunSummary) -> None:
        if execution_id is None:
            return
        payload = {"duration_ms": summary.duration_ms, "stats": summary.stats.as_dict(), "cancelled": summary.cancelled}
        try:
            async with self.session_maker() as session:
                repo = ImportRunRepository(session)
                run = await repo.get_run(execution_id)
                if run is None:
                    log.error("Import run %s vanished from the ledger", execution_id)
                    return
                if summary.status == RunStatus.succeeded:
                    await repo.finish_run(run, payload)
                else:
                    await repo.fail_run(run, summary.error or "unknown error", payload)
                consecutive = run.consecutive_failures
                await session.commit()
        except Exception as e:
            log.error("Could not record import run %s outcome: %s", execution_id, e)
            return

        threshold = self.settings.IMPORT_ALERT_THRESHOLD
        if summary.status == RunStatus.failed and threshold > 0 and consecutive >= threshold:
            log.error(
                "ALERT: property import has failed %d consecutive times (threshold %d). Last error: %s",
                consecutive, threshold, summary.error,
            )

    # -------------------------
    # Run
    # -------------------------

    async def run(self, triggered_by: str = "manual", cancel_event: asyncio.Event | None = None) -> RunSummary:
        """
        Returns the summary for finished and cancelled runs.
        Fatal errors are recorded, then re-raised to the caller.
        """
        started_at = datetime.utcnow()
        t0 = time.monotonic()
        stats = RunStats()
        test_mode = self.settings.IMPORT_TEST_MODE

        log.info("Starting property import (triggered_by=%s%s)", triggered_by, ", TEST MODE" if test_mode else "")
        execution_id = await self._ledger_start(triggered_by)

        def _summary(status: RunStatus, *, cancelled: bool = False, error: str | None = None) -> RunSummary:
            return RunSummary(
                execution_id=execution_id,
                triggered_by=triggered_by,
                status=status,
                started_at=started_at,
                duration_ms=int((time.monotonic() - t0) * 1000),
                stats=stats,
                cancelled=cancelled,
                error=error,
            )

        try:
            validate_import_settings(self.settings)
            pipeline = self._get_pipeline()

            items = await pipeline.feed.fetch()
            records, invalid = validate_source_records(items)
            stats.total = len(items)

            if invalid:
                log.warning("Skipping %d invalid feed entries", len(invalid))
                for entry in invalid[:10]:
                    log.warning("  - [%d] %s: %s", entry.index, entry.title, "; ".join(entry.errors))
                for entry in invalid:
                    stats.failed += 1
                    stats.errors.append(
                        {
                            "type": "validation",
                            "stage": "source",
                            "property": entry.title,
                            "external_id": None,
                            "message": "; ".join(entry.errors),
                        }
                    )

            cancelled = await self._process_batches(pipeline, records, stats, cancel_event)
        except Exception as e:
            summary = _summary(RunStatus.failed, error=str(e))
            log.error("Property import failed: %s", e)
            await self._ledger_finish(execution_id, summary)
            self._log_summary(summary)
            raise

        if cancelled:
            summary = _summary(RunStatus.failed, cancelled=True, error=CANCELLED)
        else:
            summary = _summary(RunStatus.succeeded)
        await self._ledger_finish(execution_id, summary)
        self._log_summary(summary)
        return summary

    async def _process_batches(
        self,
        pipeline: ImportPipeline,
        records: list[SourceRecord],
        stats: RunStats,
        cancel_event: asyncio.Event | None,
    ) -> bool:
        """Returns True when the loop stopped on cancellation."""
        batches = _chunks(records, self.settings.IMPORT_BATCH_SIZE)
        total = len(records)
        position = 0

        for b_idx, batch in enumerate(batches, start=1):
            log.info("Processing batch %d/%d (%d listings)", b_idx, len(batches), len(batch))
            created_before, dup_before, failed_before = stats.created, stats.duplicates, stats.failed

            for record in batch:
                if cancel_event is not None and cancel_event.is_set():
                    log.warning("Import cancelled after %d/%d listings", position, total)
                    return True
                position += 1
                outcome = await self.process_listing(pipeline, record, position, total, stats)
                stats.processed += 1
                if outcome == PERSISTED:
                    stats.created += 1
                elif outcome == DUPLICATE:
                    stats.duplicates += 1
                else:
                    stats.failed += 1

            log.info(
                "Batch %d complete: %d created, %d duplicates, %d failed",
                b_idx,
                stats.created - created_before,
                stats.duplicates - dup_before,
                stats.failed - failed_before,
            )

            if b_idx < len(batches) and self.settings.IMPORT_BATCH_DELAY_S > 0:
                await self._sleep(self.settings.IMPORT_BATCH_DELAY_S)

        return False

    # -------------------------
    # One listing
    # -------------------------

    async def process_listing(
        self,
        pipeline: ImportPipeline,
        record: SourceRecord,
        position: int,
        total: int,
        stats: RunStats,
    ) -> str:
        tag = f"[{position}/{total}]" + (" [TEST MODE]" if self.settings.IMPORT_TEST_MODE else "")
        stage = "identify"
        external_id: str | None = None

        try:
            log.info("%s Processing: %s", tag, record.title)
            external_id = pipeline.identity.compute_id(record)

            existing = await pipeline.identity.check_duplicate(external_id)
            if existing is not None:
                log.info("%s Duplicate of property %s (%s), skipping", tag, existing.id, external_id)
                return DUPLICATE

            stage = "normalize"
            normalized = await pipeline.normalizer.normalize(record)
            # fail before any geocoding/upload work for listings that cannot validate
            missing = [name for name, v in (("price", normalized.price), ("size", normalized.size)) if v is None]
            if missing:
                raise ListingValidationError(missing)

            agency_reference = None
            if self.settings.IMPORT_EXTRACT_REFERENCE_CODE:
                try:
                    agency_reference = await pipeline.identity.extract_reference_code(record)
                except (ModelCallError, ModelParseError) as e:
                    log.warning("%s Reference code extraction failed: %s", tag, e)

            stage = "geocode"
            geo = await pipeline.geocoder.resolve(record.location, record.address)
            location_id = await pipeline.geocoder.map_to_location_node(record.location)
            geo = dataclasses.replace(geo, location_id=location_id)

            stage = "images"
            photos = []
            if self.settings.IMPORT_SKIP_IMAGES:
                log.info("%s Skipping images", tag)
            elif record.images:
                photos = (await pipeline.images.process_all(record.images)).photos

            stage = "map"
            candidate = pipeline.mapper.to_record(
                normalized,
                geo,
                photos,
                external_id=external_id,
                address=record.address or record.location,
                agency_reference=agency_reference,
            )
            missing = pipeline.mapper.validate(candidate)
            if missing:
                raise ListingValidationError(missing)

            if self.settings.IMPORT_TEST_MODE:
                log.info(
                    "%s Would create property: %s | %s %s | %s m2 | %d photos",
                    tag, candidate.name, candidate.price, candidate.listing_type.value, candidate.size, len(photos),
                )
                return PERSISTED

            stage = "persist"
            persisted = await pipeline.mapper.persist(candidate)
            if persisted is None:
                return DUPLICATE

            log.info("%s Created property %s", tag, persisted.id)
            return PERSISTED

        except StoreUnavailableError:
            raise
        except Exception as e:
            kind = "validation" if isinstance(e, ListingValidationError) else "processing"
            log.error("%s Failed at %s for %r (%s): %s", tag, stage, record.title, external_id, e)
            stats.errors.append(
                {
                    "type": kind,
                    "stage": stage,
                    "property": record.title,
                    "external_id": external_id,
                    "message": str(e),
                }
            )
            return FAILED

    def _log_summary(self, summary: RunSummary) -> None:
        s = summary.stats
        log.info(
            "Import %s in %.1fs: fetched=%d processed=%d created=%d duplicates=%d failed=%d%s",
            summary.status.value,
            summary.duration_ms / 1000,
            s.total,
            s.processed,
            s.created,
            s.duplicates,
            s.failed,
            " (cancelled)" if summary.cancelled else "",
        )
        for err in s.errors[:5]:
            log.info("  - %s [%s]: %s", err["property"], err["stage"], err["message"])
        if len(s.errors) > 5:
            log.info("  ... and %d more errors", len(s.errors) - 5)

