"""Fold new or updated songs into album and artist creation candidates."""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from songshelf.domain.entities import StoredAlbum, StoredArtist, StoredSong, TrackRecord
from songshelf.domain.value_objects import AlbumKey

AlbumLookup = Callable[[str, str], StoredAlbum | None]
ArtistLookup = Callable[[str], StoredArtist | None]


@dataclass(frozen=True)
class AggregationResult:
    """Albums and artists that don't exist in the store yet."""

    new_albums: list[StoredAlbum] = field(default_factory=list)
    new_artists: list[StoredArtist] = field(default_factory=list)


def _year_bounds(years: list[int]) -> tuple[int | None, int | None]:
    known = [year for year in years if year > 0]
    if not known:
        return None, None
    return min(known), max(known)


# Hey future me, this ONLY proposes creation of albums/artists the lookups don't know. Stats of
# existing ones are recomputed later by StoreWriter from the real song rows, so keep this pure.
# Representative album year = year of the FIRST song of the group in input order (source order,
# or path order with order_by_path=True when you need output independent of source order).
# Matching is exact: "The Beatles" and "the beatles" are two artists unless the lookup folds
# case itself.
def aggregate(
    songs: Sequence[TrackRecord | StoredSong],
    album_lookup: AlbumLookup,
    artist_lookup: ArtistLookup,
    order_by_path: bool = False,
) -> AggregationResult:
    """Group songs by (album, artist) and by artist and emit candidates for unknown keys."""
    ordered = sorted(songs, key=lambda song: song.path) if order_by_path else list(songs)

    by_album: dict[AlbumKey, list[TrackRecord | StoredSong]] = {}
    by_artist: dict[str, list[TrackRecord | StoredSong]] = {}
    for song in ordered:
        by_album.setdefault(AlbumKey(song.album, song.artist), []).append(song)
        by_artist.setdefault(song.artist, []).append(song)

    new_albums: list[StoredAlbum] = []
    for key, group in by_album.items():
        if album_lookup(key.name, key.artist) is not None:
            continue
        first_year, last_year = _year_bounds([song.year for song in group])
        new_albums.append(
            StoredAlbum(
                name=key.name,
                artist=key.artist,
                year=group[0].year,
                song_count=len(group),
                total_duration_ms=sum(song.duration_ms for song in group),
                first_year=first_year,
                last_year=last_year,
                album_ref=next((s.album_ref for s in group if s.album_ref), None),
            )
        )

    new_artists: list[StoredArtist] = []
    for name, group in by_artist.items():
        if artist_lookup(name) is not None:
            continue
        new_artists.append(
            StoredArtist(
                name=name,
                song_count=len(group),
                album_count=len({song.album for song in group}),
                total_duration_ms=sum(song.duration_ms for song in group),
                artist_ref=next((s.artist_ref for s in group if s.artist_ref), None),
            )
        )

    return AggregationResult(new_albums=new_albums, new_artists=new_artists)
