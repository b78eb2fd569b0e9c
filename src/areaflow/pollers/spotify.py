"""Spotify poller: listening history, library, playlists and follows."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from areaflow.models import Event, Rule
from areaflow.pollers.base import BasePoller

logger = logging.getLogger(__name__)

LAST_TRACK = "last_track_id"
PLAYED_AT = "played_at"
SAVED_COUNT = "saved_count"
FOLLOWED = "followed_artists"
RECENT_LIMIT = 20
FOLLOWED_LIMIT = 50


@dataclass
class SpotifyState:
    """One owner's fetched Spotify state. Fields stay None when not fetched."""

    recent: list[dict[str, Any]] | None = None
    saved_total: int | None = None
    latest_saved: dict[str, Any] | None = None
    playlists: dict[str, dict[str, Any]] = field(default_factory=dict)
    followed: list[dict[str, Any]] | None = None


def _playlist_key(playlist_id: str) -> str:
    return f"playlist:{playlist_id}"


def _track_event_payload(track: dict[str, Any], played_at: str | None = None) -> dict[str, Any]:
    track = dict(track)
    if played_at:
        track["played_at"] = played_at
    return {
        "track": track,
        "artist": {"id": track.get("artist_id"), "name": track.get("artist")},
    }


class SpotifyPoller(BasePoller):
    """Polls Spotify for the action kinds present among each owner's rules."""

    provider = "spotify"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.cursors.reserve(max(RECENT_LIMIT, FOLLOWED_LIMIT))

    def fetch(self, owner_id: str, rules: list[Rule]) -> SpotifyState:
        kinds = {r.action.kind for r in rules}
        state = SpotifyState()

        if kinds & {"new_track_played", "specific_artist_played"}:
            state.recent = self.adapter.recently_played(owner_id, limit=RECENT_LIMIT)

        if "new_track_saved" in kinds:
            saved = self.adapter.saved_tracks(owner_id, limit=1)
            state.saved_total = saved["total"]
            state.latest_saved = saved["items"][0]["track"] if saved["items"] else None

        if "playlist_updated" in kinds:
            playlist_ids = {
                str(r.action.filter.get("playlistId"))
                for r in rules
                if r.action.kind == "playlist_updated" and r.action.filter.get("playlistId")
            }
            for playlist_id in sorted(playlist_ids):
                state.playlists[playlist_id] = self.adapter.get_playlist(owner_id, playlist_id)

        if "new_artist_followed" in kinds:
            state.followed = self.adapter.followed_artists(owner_id, limit=FOLLOWED_LIMIT)

        return state

    def _event(self, owner_id: str, kind: str, payload: dict[str, Any]) -> Event:
        return Event(provider=self.provider, kind=kind, owner_scope=owner_id, payload=payload)

    def detect(self, owner_id: str, rules: list[Rule], state: SpotifyState) -> list[Event]:
        kinds = {r.action.kind for r in rules}
        events: list[Event] = []

        if state.recent is not None:
            if "new_track_played" in kinds:
                events.extend(self._detect_track_played(owner_id, state.recent))
            if "specific_artist_played" in kinds:
                events.extend(self._detect_artist_played(owner_id, state.recent))

        if state.saved_total is not None:
            events.extend(self._detect_saved(owner_id, state.saved_total, state.latest_saved))

        for playlist_id, playlist in state.playlists.items():
            snapshot_id = playlist.get("snapshot_id")
            if self.cursors.advance(owner_id, _playlist_key(playlist_id), snapshot_id):
                events.append(self._event(owner_id, "playlist_updated", {"playlist": playlist}))

        if state.followed is not None:
            events.extend(self._detect_followed(owner_id, state.followed))

        return events

    def _detect_track_played(self, owner_id: str, recent: list[dict[str, Any]]) -> list[Event]:
        if not recent:
            return []
        latest = recent[0]
        track = latest["track"]
        if not self.cursors.advance(owner_id, LAST_TRACK, track.get("id")):
            return []
        logger.info(f"New track played for owner {owner_id}: {track.get('name')}")
        return [
            self._event(
                owner_id,
                "new_track_played",
                _track_event_payload(track, latest.get("played_at")),
            )
        ]

    def _detect_artist_played(self, owner_id: str, recent: list[dict[str, Any]]) -> list[Event]:
        stamps = [item["played_at"] for item in recent if item.get("played_at")]
        if self.cursors.get_set(owner_id, PLAYED_AT) is None:
            self.cursors.add(owner_id, PLAYED_AT, reversed(stamps))
            return []

        new_stamps = set(self.cursors.diff(owner_id, PLAYED_AT, stamps))
        new_items = [item for item in reversed(recent) if item.get("played_at") in new_stamps]
        self.cursors.add(owner_id, PLAYED_AT, [item["played_at"] for item in new_items])
        return [
            self._event(
                owner_id,
                "specific_artist_played",
                _track_event_payload(item["track"], item["played_at"]),
            )
            for item in new_items
        ]

    def _detect_saved(
        self, owner_id: str, total: int, latest: dict[str, Any] | None
    ) -> list[Event]:
        was_set = self.cursors.is_set(owner_id, SAVED_COUNT)
        previous = self.cursors.get(owner_id, SAVED_COUNT)
        self.cursors.set(owner_id, SAVED_COUNT, total)
        if not was_set or previous is None or total <= previous or latest is None:
            return []
        logger.info(f"Saved tracks for owner {owner_id}: {previous} -> {total}")
        return [self._event(owner_id, "new_track_saved", _track_event_payload(latest))]

    def _detect_followed(self, owner_id: str, followed: list[dict[str, Any]]) -> list[Event]:
        ids = [artist["id"] for artist in followed if artist.get("id")]
        new_ids = set(self.cursors.diff(owner_id, FOLLOWED, ids))
        self.cursors.replace(owner_id, FOLLOWED, ids)
        return [
            self._event(owner_id, "new_artist_followed", {"artist": artist})
            for artist in followed
            if artist.get("id") in new_ids
        ]
