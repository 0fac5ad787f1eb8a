"""Runs a selection end to end: validate, fetch, merge, write."""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Tuple

from archon_updater.data.identifiers import IdentifierMapper
from archon_updater.data.models import (
    DungeonRun,
    FetchOutcome,
    FetchTarget,
    Found,
    ManagedEntry,
    NotAvailable,
    Period,
    RaidEncounter,
    Selection,
    Settings,
    TransportError,
)
from archon_updater.data.report import ReportBuilder, RunReport
from archon_updater.storage.store import PersistedStore
from archon_updater.utils.logger import get_logger
from archon_updater.web.fetcher import ArchonFetcher
from archon_updater.web.rate_limiter import RateLimiter


# (final outcome, requests made, whether the last-week fallback was used)
WorkResult = Tuple[FetchOutcome, int, bool]


class Orchestrator:
    """
    Turns a Selection into one coherent update of the data file.

    Fetch workers only produce outcomes; the document is edited in a single
    aggregation step once every worker has finished, and written once.
    Per-target failures are recorded in the report. Validation, load and
    write failures propagate to the caller and nothing is written.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        fetcher: Optional[ArchonFetcher] = None,
        store: Optional[PersistedStore] = None,
        mapper: Optional[IdentifierMapper] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            settings: Runtime settings
            fetcher: Page fetcher (built from settings if omitted)
            store: Data file store (built from settings if omitted)
            mapper: Identifier mapper
            rate_limiter: Limiter shared by all fetch workers
        """
        self.settings = settings or Settings()
        self.mapper = mapper or IdentifierMapper()
        self.log = get_logger()

        if fetcher is None:
            if rate_limiter is None:
                rate_limiter = RateLimiter(
                    rate=self.settings.requests_per_second,
                    capacity=self.settings.burst,
                )
            fetcher = ArchonFetcher(
                settings=self.settings,
                rate_limiter=rate_limiter,
                mapper=self.mapper,
            )
        self.fetcher = fetcher
        self.store = store or PersistedStore(self.settings)

    # ========== Planning ==========

    def expand(self, selection: Selection) -> List[FetchTarget]:
        """
        Expand a selection into its fetch targets.

        Raid targets: character x spec x boss x difficulty. Dungeon targets:
        character x spec x dungeon, for the current period. Duplicates are
        collapsed, first occurrence wins.

        Args:
            selection: Validated selection

        Returns:
            Targets in declaration order
        """
        targets: List[FetchTarget] = []
        seen = set()

        def add(target: FetchTarget) -> None:
            if target not in seen:
                seen.add(target)
                targets.append(target)

        for character in selection.characters:
            for spec in character.specializations:
                spec_token = self.mapper.spec_token(character.character_class, spec)

                for boss in selection.raid_bosses:
                    for difficulty in selection.raid_difficulties:
                        add(FetchTarget(
                            character=character,
                            specialization=spec_token,
                            content=RaidEncounter(
                                boss=self.mapper.boss_token(boss),
                                difficulty=self.mapper.difficulty_token(difficulty),
                            ),
                        ))

                for dungeon in selection.dungeons:
                    add(FetchTarget(
                        character=character,
                        specialization=spec_token,
                        content=DungeonRun(dungeon=self.mapper.dungeon_token(dungeon)),
                        period=Period.CURRENT,
                    ))

        return targets

    def plan(self, selection: Selection) -> List[Tuple[FetchTarget, str]]:
        """
        Validate a selection and list the pages a run would request.

        Args:
            selection: Selection to plan

        Returns:
            (target, url) pairs

        Raises:
            ValidationError: If the selection is invalid
        """
        self.mapper.validate(selection)
        return [(t, self.fetcher.build_url(t)) for t in self.expand(selection)]

    def _request_key(self, target: FetchTarget) -> tuple:
        # Two characters of the same class/spec request the same page
        return (
            self.mapper.class_token(target.character.character_class),
            target.specialization,
            target.content,
            target.period,
        )

    # ========== Fetching ==========

    def _fetch_with_fallback(self, target: FetchTarget) -> WorkResult:
        """Fetch one target; dungeons fall back to last week's data."""
        outcome = self.fetcher.fetch(target)

        if isinstance(target.content, DungeonRun) and isinstance(outcome, NotAvailable):
            self.log.info(f"No current data for {target.describe()}, trying last week")
            outcome = self.fetcher.fetch(target.with_period(Period.PREVIOUS))
            return outcome, 2, True

        return outcome, 1, False

    def dispatch(self, targets: List[FetchTarget]) -> Tuple[Dict[FetchTarget, FetchOutcome], int, int]:
        """
        Fetch every target on a bounded worker pool.

        Targets that map to the same page are fetched once. A worker that
        raises is recorded as a TransportError for its targets.

        Args:
            targets: Targets to fetch

        Returns:
            (outcome per target, requests made, fallbacks used)
        """
        groups: Dict[tuple, List[FetchTarget]] = {}
        for target in targets:
            groups.setdefault(self._request_key(target), []).append(target)

        outcomes: Dict[FetchTarget, FetchOutcome] = {}
        requests_made = 0
        fallbacks_used = 0

        if not groups:
            return outcomes, 0, 0

        workers = max(1, self.settings.max_concurrent_requests)
        self.log.info(
            f"Fetching {len(groups)} pages for {len(targets)} targets "
            f"({workers} workers)"
        )

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as executor:
            futures = {
                executor.submit(self._fetch_with_fallback, group[0]): group
                for group in groups.values()
            }

            for future in as_completed(futures):
                group = futures[future]
                try:
                    outcome, made, fell_back = future.result()
                except Exception as e:
                    self.log.error(f"Unexpected error fetching {group[0].describe()}: {e}")
                    outcome, made, fell_back = TransportError(reason=f"unexpected error: {e}"), 1, False

                requests_made += made
                fallbacks_used += int(fell_back)
                for target in group:
                    outcomes[target] = outcome

                self._log_outcome(group[0], outcome)

        return outcomes, requests_made, fallbacks_used

    def _log_outcome(self, target: FetchTarget, outcome: FetchOutcome) -> None:
        if isinstance(outcome, Found):
            self.log.info(f"Found build for {target.describe()}")
        elif isinstance(outcome, NotAvailable):
            self.log.info(f"No build available for {target.describe()}")
        else:
            self.log.warning(f"Failed {target.describe()}: {outcome.reason}")

    # ========== Merging ==========

    def make_entry(self, target: FetchTarget, outcome: Found) -> ManagedEntry:
        """
        Build the managed entry for a found build.

        Args:
            target: Target the build was found for
            outcome: Found outcome

        Returns:
            ManagedEntry labelled from the target's key
        """
        return ManagedEntry(
            label=target.key.label(self.settings.label_marker),
            build_code=outcome.build_code,
            fields={
                "character": target.character.name,
                "class": self.mapper.class_file_token(target.character.character_class),
                "spec": target.specialization,
                "content": target.content.label,
                "source": outcome.url,
            },
        )

    def run(self, selection: Selection, dry_run: bool = False) -> RunReport:
        """
        Execute a selection.

        Args:
            selection: What to fetch and where to write it
            dry_run: Fetch and merge in memory but skip the write

        Returns:
            RunReport with per-category counts and failing targets

        Raises:
            ValidationError: If the selection is invalid (before any I/O)
            ParseError, SchemaError: If the data file cannot be loaded
            WriteError: If the final write fails
        """
        self.mapper.validate(selection)

        doc = self.store.load(selection.output_path)
        builder = ReportBuilder(output_path=selection.output_path, dry_run=dry_run)

        if selection.clear_previous_builds:
            builder.record_entries(cleared=self.store.clear_managed(doc))

        targets = self.expand(selection)
        self.log.info(f"Expanded selection into {len(targets)} targets")

        outcomes, requests_made, fallbacks_used = self.dispatch(targets)
        builder.record_requests(requests_made, fallbacks_used)

        added = 0
        updated = 0
        for target in targets:
            outcome = outcomes[target]
            builder.record(target, outcome)
            if isinstance(outcome, Found):
                if self.store.upsert(doc, self.make_entry(target, outcome)):
                    added += 1
                else:
                    updated += 1
        builder.record_entries(added=added, updated=updated)

        written = False
        if dry_run:
            self.log.info("Dry run: not writing data file")
        else:
            self.store.save(doc, selection.output_path)
            written = True

        return builder.finish(written)
