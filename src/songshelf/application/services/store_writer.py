"""Apply a reconciliation plan to the library store."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from songshelf.domain.dtos import ReconciliationPlan, WriteOutcome
from songshelf.domain.exceptions import StoreWriteError
from songshelf.domain.ports import (
    IAlbumRepository,
    IArtistRepository,
    IScanBookkeepingRepository,
    ISongRepository,
)
from songshelf.domain.value_objects import AlbumKey

logger = logging.getLogger(__name__)

Checkpoint = Callable[[], Awaitable[None]]

INSERT_ARTISTS = "insert_artists"
INSERT_ALBUMS = "insert_albums"
INSERT_SONGS = "insert_songs"
UPDATE_SONGS = "update_songs"
REMOVE_SONGS = "remove_songs"
RECOMPUTE_STATS = "recompute_stats"
UPDATE_BOOKKEEPING = "update_bookkeeping"


# Hey future me, the step ORDER is the whole point of this class: artists before albums before
# songs, because albums and songs resolve their artist/album rows at insert time. A failing step
# stops the rest and raises StoreWriteError(step=...); steps that already ran are NOT undone.
# That's fine because a re-run classifies the half-written rows as Updated/Unchanged and
# converges. Bookkeeping is the last step, so a failed apply leaves it stale and the next
# incremental scan re-covers the same window.
#
# `checkpoint` runs after every step - with SQLAlchemy it's session.commit, which is what makes
# "earlier steps stay applied" true when a later step blows up.
class StoreWriter:
    """Ordered, step-by-step writer for reconciliation plans."""

    def __init__(
        self,
        songs: ISongRepository,
        albums: IAlbumRepository,
        artists: IArtistRepository,
        bookkeeping: IScanBookkeepingRepository,
        recompute_concurrency: int = 1,
        prune_orphans: bool = True,
        checkpoint: Checkpoint | None = None,
    ) -> None:
        if recompute_concurrency < 1:
            raise ValueError(f"Invalid recompute_concurrency {recompute_concurrency}")
        self.songs = songs
        self.albums = albums
        self.artists = artists
        self.bookkeeping = bookkeeping
        self.recompute_concurrency = recompute_concurrency
        self.prune_orphans = prune_orphans
        self.checkpoint = checkpoint

    async def apply(self, plan: ReconciliationPlan) -> WriteOutcome:
        """Write ``plan`` to the store.

        Raises:
            InvalidStateException: the plan was already applied
            StoreWriteError: a write step failed; ``step`` names it
        """
        plan.mark_consumed()
        outcome = WriteOutcome()

        await self._run_step(INSERT_ARTISTS, self._insert_artists(plan, outcome), outcome)
        await self._run_step(INSERT_ALBUMS, self._insert_albums(plan, outcome), outcome)
        await self._run_step(INSERT_SONGS, self._insert_songs(plan, outcome), outcome)
        await self._run_step(UPDATE_SONGS, self._update_songs(plan, outcome), outcome)
        if plan.scope.detects_removals:
            await self._run_step(REMOVE_SONGS, self._remove_songs(plan, outcome), outcome)
        elif plan.songs_to_remove:
            logger.warning(
                f"Ignoring {len(plan.songs_to_remove)} removal(s) in a "
                f"{plan.scope.mode.value} scan plan"
            )
        await self._run_step(RECOMPUTE_STATS, self._recompute_stats(plan, outcome), outcome)
        await self._run_step(UPDATE_BOOKKEEPING, self._update_bookkeeping(plan), outcome)

        logger.info(
            f"Applied {plan.scope.mode.value} scan plan\n"
            f"├─ artists: +{outcome.artists_added} -{outcome.artists_removed}\n"
            f"├─ albums: +{outcome.albums_added} -{outcome.albums_removed}\n"
            f"├─ songs: +{outcome.songs_added} ~{outcome.songs_updated} -{outcome.songs_removed}\n"
            f"└─ recomputed: {outcome.albums_recomputed} album(s), "
            f"{outcome.artists_recomputed} artist(s)"
        )
        return outcome

    async def _run_step(self, step: str, work: Awaitable[None], outcome: WriteOutcome) -> None:
        try:
            await work
            if self.checkpoint is not None:
                await self.checkpoint()
        except StoreWriteError:
            raise
        except Exception as e:
            cause: BaseException = e
            if isinstance(e, ExceptionGroup) and e.exceptions:
                cause = e.exceptions[0]
            logger.error(f"Store write step '{step}' failed: {cause}")
            raise StoreWriteError(step, str(cause)) from e
        outcome.steps_completed.append(step)

    async def _insert_artists(self, plan: ReconciliationPlan, outcome: WriteOutcome) -> None:
        if plan.artists_to_insert:
            await self.artists.add_batch(plan.artists_to_insert)
        outcome.artists_added = len(plan.artists_to_insert)

    async def _insert_albums(self, plan: ReconciliationPlan, outcome: WriteOutcome) -> None:
        if plan.albums_to_insert:
            await self.albums.add_batch(plan.albums_to_insert)
        outcome.albums_added = len(plan.albums_to_insert)

    async def _insert_songs(self, plan: ReconciliationPlan, outcome: WriteOutcome) -> None:
        if plan.songs_to_insert:
            await self.songs.add_batch(plan.songs_to_insert)
        outcome.songs_added = len(plan.songs_to_insert)

    async def _update_songs(self, plan: ReconciliationPlan, outcome: WriteOutcome) -> None:
        if plan.songs_to_update:
            await self.songs.update_batch([update.updated for update in plan.songs_to_update])
        outcome.songs_updated = len(plan.songs_to_update)

    async def _remove_songs(self, plan: ReconciliationPlan, outcome: WriteOutcome) -> None:
        if plan.songs_to_remove:
            outcome.songs_removed = await self.songs.delete_by_paths(plan.paths_to_remove)

    # Yo, every album/artist the plan touched gets its stats re-queried from the song rows -
    # including the OLD album/artist of an updated or removed song, otherwise that one keeps a
    # stale count. One recompute per entity, fanned out under a semaphore and joined by the
    # TaskGroup before bookkeeping moves. With a shared AsyncSession keep concurrency at 1.
    async def _recompute_stats(self, plan: ReconciliationPlan, outcome: WriteOutcome) -> None:
        album_keys = sorted(plan.touched_albums(), key=lambda key: (key.artist, key.name))
        artist_names = sorted(plan.touched_artists())
        semaphore = asyncio.Semaphore(self.recompute_concurrency)

        async def recompute_album(key: AlbumKey) -> None:
            async with semaphore:
                stats = await self.songs.album_stats(key)
                await self.albums.update_stats(key, stats)

        async def recompute_artist(name: str) -> None:
            async with semaphore:
                stats = await self.songs.artist_stats(name)
                await self.artists.update_stats(name, stats)

        async with asyncio.TaskGroup() as group:
            for key in album_keys:
                group.create_task(recompute_album(key))
            for name in artist_names:
                group.create_task(recompute_artist(name))

        outcome.albums_recomputed = len(album_keys)
        outcome.artists_recomputed = len(artist_names)

        if self.prune_orphans and plan.scope.detects_removals:
            outcome.albums_removed = await self.albums.delete_empty()
            outcome.artists_removed = await self.artists.delete_empty()

    async def _update_bookkeeping(self, plan: ReconciliationPlan) -> None:
        bookkeeping = await self.bookkeeping.get()
        bookkeeping.mark_scanned(plan.scope.mode, plan.started_at_ms)
        await self.bookkeeping.save(bookkeeping)
