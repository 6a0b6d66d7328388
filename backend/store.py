"""Creator Vetting Pipeline - State Store
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

In-process repository for Batch, Creator and Report rows. When a data path
is given every mutation is written to a JSON file atomically (temp file +
rename), and the file is reloaded on startup.
"""

import os
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Union

from pydantic import BaseModel, Field

from models import (
    Batch,
    BatchStatus,
    Creator,
    CreatorStatus,
    Finding,
    PlatformStatus,
    RawResultPayload,
    Report,
    can_transition,
    max_risk_level,
    utc_now,
)

logger = logging.getLogger(__name__)

STUCK_STATUSES = {CreatorStatus.PENDING, CreatorStatus.PROCESSING}


class InvalidTransitionError(ValueError):
    """A creator status change that would move backward."""


class _Snapshot(BaseModel):
    batches: list[Batch] = Field(default_factory=list)
    creators: list[Creator] = Field(default_factory=list)
    reports: list[Report] = Field(default_factory=list)


class VettingStore:
    """
    Batch/Creator/Report persistence.

    Report writes are additive: raw-results keys are only ever added and
    the risk level is never lowered.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._batches: dict[str, Batch] = {}
        self._creators: dict[str, Creator] = {}
        self._reports: dict[str, Report] = {}   # keyed by creator id
        if self.path is not None and self.path.exists():
            self._load()

    # ------------------------------------------------------------------ #
    #  Persistence                                                       #
    # ------------------------------------------------------------------ #

    def _load(self) -> None:
        with open(self.path, 'r', encoding='utf-8') as f:
            snapshot = _Snapshot.model_validate(json.load(f))
        self._batches = {b.id: b for b in snapshot.batches}
        self._creators = {c.id: c for c in snapshot.creators}
        self._reports = {r.creator_id: r for r in snapshot.reports}
        logger.info(
            f"Loaded {len(self._batches)} batches, {len(self._creators)} creators, "
            f"{len(self._reports)} reports from {self.path}"
        )

    def _save(self) -> None:
        if self.path is None:
            return
        snapshot = _Snapshot(
            batches=list(self._batches.values()),
            creators=list(self._creators.values()),
            reports=list(self._reports.values()),
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            f.write(snapshot.model_dump_json(indent=2))
        os.replace(tmp_path, self.path)

    # ------------------------------------------------------------------ #
    #  Batches                                                           #
    # ------------------------------------------------------------------ #

    def create_batch(
        self,
        name: str,
        creators: Iterable[tuple[str, list[str]]],
        owner: Optional[str] = None,
        search_terms: Iterable[str] = (),
        competitors: Iterable[str] = (),
    ) -> Batch:
        """Create a batch together with its creators given as (name, social links)."""
        batch = Batch(
            name=name,
            owner=owner,
            search_terms=list(search_terms),
            competitors=list(competitors),
        )
        self._batches[batch.id] = batch
        self.add_creators(batch.id, creators)
        logger.info(f"Created batch {batch.id} '{name}' with {len(batch.creator_ids)} creators")
        return batch

    def add_creators(self, batch_id: str, creators: Iterable[tuple[str, list[str]]]) -> list[Creator]:
        batch = self._require_batch(batch_id)
        added = []
        for name, links in creators:
            creator = Creator(batch_id=batch_id, name=name, social_links=list(links))
            self._creators[creator.id] = creator
            batch.creator_ids.append(creator.id)
            added.append(creator)
        self._save()
        return added

    def get_batch(self, batch_id: str) -> Optional[Batch]:
        return self._batches.get(batch_id)

    def update_batch_status(self, batch_id: str, status: BatchStatus) -> Batch:
        batch = self._require_batch(batch_id)
        batch.status = status
        if status in (BatchStatus.COMPLETED, BatchStatus.FAILED):
            batch.completed_at = utc_now()
        self._save()
        return batch

    def batch_progress(self, batch_id: str) -> dict[str, int]:
        """Creator counts per status. Derived, so safe to read mid-run."""
        counts = {status.value: 0 for status in CreatorStatus}
        for creator in self.list_creators(batch_id):
            counts[creator.status.value] += 1
        counts["total"] = sum(counts.values())
        return counts

    def _require_batch(self, batch_id: str) -> Batch:
        batch = self._batches.get(batch_id)
        if batch is None:
            raise KeyError(f"batch {batch_id} not found")
        return batch

    # ------------------------------------------------------------------ #
    #  Creators                                                          #
    # ------------------------------------------------------------------ #

    def list_creators(self, batch_id: str) -> list[Creator]:
        batch = self._require_batch(batch_id)
        return [self._creators[cid] for cid in batch.creator_ids if cid in self._creators]

    def get_creator(self, creator_id: str) -> Optional[Creator]:
        return self._creators.get(creator_id)

    def set_creator_status(self, creator_id: str, status: CreatorStatus, recovery: bool = False) -> Creator:
        creator = self._require_creator(creator_id)
        if not can_transition(creator.status, status, recovery=recovery):
            raise InvalidTransitionError(
                f"creator {creator_id}: {creator.status.value} -> {status.value} not allowed"
            )
        creator.status = status
        creator.updated_at = utc_now()
        self._save()
        return creator

    def set_platform_status(self, creator_id: str, statuses: dict[str, PlatformStatus]) -> Creator:
        creator = self._require_creator(creator_id)
        creator.platform_status.update(statuses)
        creator.updated_at = utc_now()
        self._save()
        return creator

    def list_stuck_creators(self, older_than: datetime) -> list[Creator]:
        """PENDING/PROCESSING creators not updated since `older_than`, newest first."""
        stuck = [
            c for c in self._creators.values()
            if c.status in STUCK_STATUSES and c.updated_at < older_than
        ]
        return sorted(stuck, key=lambda c: c.updated_at, reverse=True)

    def _require_creator(self, creator_id: str) -> Creator:
        creator = self._creators.get(creator_id)
        if creator is None:
            raise KeyError(f"creator {creator_id} not found")
        return creator

    # ------------------------------------------------------------------ #
    #  Reports                                                           #
    # ------------------------------------------------------------------ #

    def get_report(self, creator_id: str) -> Optional[Report]:
        return self._reports.get(creator_id)

    def save_report(self, report: Report) -> Report:
        """Create the creator's report, or merge into the existing one."""
        self._require_creator(report.creator_id)
        existing = self._reports.get(report.creator_id)
        if existing is None:
            self._reports[report.creator_id] = report
            self._save()
            return report

        raw_results = existing.raw_results
        for key in report.raw_results.keys():
            raw_results = raw_results.merged(key, report.raw_results[key])

        merged = existing.model_copy(update={
            "risk_level": max_risk_level(existing.risk_level, report.risk_level),
            "summary": existing.summary or report.summary,
            "findings": _merge_findings(existing.findings, report.findings),
            "search_queries": existing.search_queries + [
                q for q in report.search_queries if q not in existing.search_queries
            ],
            "raw_results": raw_results,
            "updated_at": utc_now(),
        })
        self._reports[report.creator_id] = merged
        self._save()
        return merged

    def merge_raw_results(self, creator_id: str, key: str, payload: RawResultPayload) -> Report:
        """
        Merge one provider payload into an existing report.

        The report is left untouched (same updated_at) when the merge adds
        nothing, so repeating a merge is a no-op.
        """
        report = self._reports.get(creator_id)
        if report is None:
            raise KeyError(f"no report for creator {creator_id}")
        raw_results = report.raw_results.merged(key, payload)
        if raw_results == report.raw_results:
            return report
        updated = report.model_copy(update={"raw_results": raw_results, "updated_at": utc_now()})
        self._reports[creator_id] = updated
        self._save()
        return updated

    def linked_provider_ids(self) -> set[str]:
        ids: set[str] = set()
        for report in self._reports.values():
            ids.update(report.raw_results.linked_provider_ids())
        return ids


def _merge_findings(existing: list[Finding], new: list[Finding]) -> list[Finding]:
    merged = list(existing)
    for finding in new:
        if finding not in merged:
            merged.append(finding)
    return merged
