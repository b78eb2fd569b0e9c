"""Spotify provider over the Web API."""

from __future__ import annotations

import logging
import threading
from typing import Any

import httpx

from areaflow.adapters.base import (
    ActionDescriptor,
    AuthType,
    MatchMode,
    ParameterSpec,
    ReactionDescriptor,
    ReactionHandler,
    ServiceAdapter,
    filter_param,
)
from areaflow.errors import AuthError
from areaflow.http import create_httpx_client
from areaflow.utils.retry import with_retry

logger = logging.getLogger(__name__)

API_BASE = "https://api.spotify.com/v1"
TOKEN_URL = "https://accounts.spotify.com/api/token"
TOP_TRACKS = 5


def track_payload(track: dict[str, Any]) -> dict[str, Any]:
    """Flatten a Spotify track object for event payloads."""
    artists = [{"id": a.get("id"), "name": a.get("name", "")} for a in track.get("artists", [])]
    first = artists[0] if artists else {"id": None, "name": ""}
    return {
        "id": track.get("id"),
        "name": track.get("name", ""),
        "uri": track.get("uri", ""),
        "artist": first["name"],
        "artist_id": first["id"],
        "artist_ids": [a["id"] for a in artists if a["id"]],
        "artists": artists,
        "album": (track.get("album") or {}).get("name", ""),
    }


class SpotifyClient:
    """One owner's Spotify session. Refreshes the access token once on 401."""

    def __init__(
        self,
        access_token: str,
        refresh_token: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        http: httpx.Client | None = None,
    ):
        self.refresh_token = refresh_token
        self.client_id = client_id
        self.client_secret = client_secret
        self.http = http or create_httpx_client(API_BASE)
        self.user_id: str | None = None
        self._token = access_token
        self._token_lock = threading.Lock()

    def _refresh(self) -> bool:
        if not (self.refresh_token and self.client_id and self.client_secret):
            return False
        response = httpx.post(
            TOKEN_URL,
            data={"grant_type": "refresh_token", "refresh_token": self.refresh_token},
            auth=(self.client_id, self.client_secret),
            timeout=15.0,
        )
        if response.status_code != 200:
            logger.warning(f"Spotify token refresh failed: HTTP {response.status_code}")
            return False
        data = response.json()
        with self._token_lock:
            self._token = data["access_token"]
            self.refresh_token = data.get("refresh_token", self.refresh_token)
        return True

    def _send(self, method: str, path: str, params: Any, json: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._token}"}
        return self.http.request(method, path, params=params, json=json, headers=headers)

    @with_retry(max_retries=2, base_delay=1.0)
    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        response = self._send(method, path, params, json)
        if response.status_code == 401 and self._refresh():
            response = self._send(method, path, params, json)
        if response.status_code == 401:
            raise AuthError("Spotify rejected the access token", provider="spotify")
        response.raise_for_status()
        return response.json() if response.content else None

    def me(self) -> dict[str, Any]:
        return self.request("GET", "/me")

    def close(self) -> None:
        self.http.close()


class SpotifyAdapter(ServiceAdapter):
    """
    Spotify through its Web API.

    Credentials: ``{"access_token", "refresh_token"}``. Client id and secret
    come from settings and are used for token refresh.
    """

    name = "spotify"
    display_name = "Spotify"
    auth_type = AuthType.OAUTH2

    def __init__(self, client_id: str | None = None, client_secret: str | None = None):
        super().__init__()
        self.client_id = client_id
        self.client_secret = client_secret

    def describe_actions(self) -> list[ActionDescriptor]:
        return [
            ActionDescriptor(
                "new_track_played",
                "New track played",
                "A different track was played",
                polled=True,
            ),
            ActionDescriptor(
                "new_track_saved",
                "New track saved",
                "A track was added to the library",
                polled=True,
            ),
            ActionDescriptor(
                "playlist_updated",
                "Playlist updated",
                "A playlist's contents changed",
                [filter_param("playlistId", "playlist.id", required=True)],
                polled=True,
            ),
            ActionDescriptor(
                "specific_artist_played",
                "Specific artist played",
                "A track by an artist was played",
                [
                    filter_param(
                        "artistId",
                        "track.artist_ids",
                        MatchMode.ANY_OF,
                        required=True,
                        description="Spotify artist id",
                    )
                ],
                polled=True,
            ),
            ActionDescriptor(
                "new_artist_followed", "New artist followed", "An artist was followed", polled=True
            ),
        ]

    def describe_reactions(self) -> list[ReactionDescriptor]:
        return [
            ReactionDescriptor(
                "add_track_to_playlist",
                "Add track to playlist",
                "Add the triggering or a given track to a playlist",
                [
                    ParameterSpec("playlistId", required=True),
                    ParameterSpec("trackUri", description="Defaults to the event's track"),
                ],
            ),
            ReactionDescriptor(
                "create_playlist",
                "Create playlist",
                "Create a playlist",
                [
                    ParameterSpec("name", required=True),
                    ParameterSpec("description"),
                    ParameterSpec("isPublic", type="boolean", default=False),
                ],
            ),
            ReactionDescriptor(
                "follow_artist",
                "Follow artist",
                "Follow the triggering or a given artist",
                [ParameterSpec("artistId", description="Defaults to the event's artist")],
            ),
            ReactionDescriptor(
                "create_playlist_with_artist_top_tracks",
                "Playlist of artist top tracks",
                f"Create a playlist holding an artist's top {TOP_TRACKS} tracks",
                [
                    ParameterSpec("artistId", description="Defaults to the event's artist"),
                    ParameterSpec("artistName"),
                    ParameterSpec("playlistName"),
                    ParameterSpec("playlistDescription"),
                    ParameterSpec("isPublic", type="boolean", default=False),
                ],
            ),
        ]

    def _connect(self, owner_id: str, credentials: dict[str, Any]) -> Any:
        token = credentials.get("access_token") or credentials.get("accessToken")
        if not token:
            return None
        client = SpotifyClient(
            token,
            refresh_token=credentials.get("refresh_token") or credentials.get("refreshToken"),
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
        profile = client.me()
        client.user_id = profile["id"]
        return client

    def forget(self, owner_id: str) -> bool:
        with self._lock:
            client = self._clients.pop(owner_id, None)
        if client is not None:
            client.close()
        return client is not None

    def _reaction_handlers(self) -> dict[str, ReactionHandler]:
        return {
            "add_track_to_playlist": self._add_track_to_playlist,
            "create_playlist": self._create_playlist,
            "follow_artist": self._follow_artist,
            "create_playlist_with_artist_top_tracks": self._create_top_tracks_playlist,
        }

    # Poll helpers

    def recently_played(self, owner_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Recently played tracks, newest first."""
        data = self.get_client(owner_id).request(
            "GET", "/me/player/recently-played", params={"limit": limit}
        )
        return [
            {"track": track_payload(item["track"]), "played_at": item.get("played_at")}
            for item in data.get("items", [])
        ]

    def saved_tracks(self, owner_id: str, limit: int = 1) -> dict[str, Any]:
        """Library size and the most recently saved tracks."""
        data = self.get_client(owner_id).request("GET", "/me/tracks", params={"limit": limit})
        return {
            "total": data.get("total", 0),
            "items": [
                {"track": track_payload(item["track"]), "added_at": item.get("added_at")}
                for item in data.get("items", [])
            ],
        }

    def get_playlist(self, owner_id: str, playlist_id: str) -> dict[str, Any]:
        data = self.get_client(owner_id).request(
            "GET",
            f"/playlists/{playlist_id}",
            params={"fields": "id,name,snapshot_id,tracks.total,owner.id"},
        )
        return {
            "id": data.get("id", playlist_id),
            "name": data.get("name", ""),
            "snapshot_id": data.get("snapshot_id"),
            "track_count": (data.get("tracks") or {}).get("total", 0),
        }

    def followed_artists(self, owner_id: str, limit: int = 50) -> list[dict[str, Any]]:
        data = self.get_client(owner_id).request(
            "GET", "/me/following", params={"type": "artist", "limit": limit}
        )
        return [
            {"id": a.get("id"), "name": a.get("name", ""), "genres": a.get("genres", [])}
            for a in (data.get("artists") or {}).get("items", [])
        ]

    # Reactions

    def _create(self, client: SpotifyClient, name: str, description: str, public: Any) -> str:
        public = str(public).lower() == "true" if isinstance(public, str) else bool(public)
        playlist = client.request(
            "POST",
            f"/users/{client.user_id}/playlists",
            json={"name": name, "description": description or "", "public": public},
        )
        logger.info(f"Created Spotify playlist {name} ({playlist['id']})")
        return playlist["id"]

    def _add_track_to_playlist(
        self, client: SpotifyClient, params: dict[str, Any], payload: dict
    ) -> bool:
        uri = params.get("trackUri") or (payload.get("track") or {}).get("uri")
        if not uri:
            logger.warning("add_track_to_playlist has no track uri")
            return False
        client.request("POST", f"/playlists/{params['playlistId']}/tracks", json={"uris": [uri]})
        logger.info(f"Added {uri} to playlist {params['playlistId']}")
        return True

    def _create_playlist(
        self, client: SpotifyClient, params: dict[str, Any], payload: dict
    ) -> bool:
        self._create(client, params["name"], params.get("description"), params.get("isPublic"))
        return True

    def _artist_from(self, params: dict[str, Any], payload: dict) -> tuple[str | None, str]:
        artist = payload.get("artist") or {}
        track = payload.get("track") or {}
        artist_id = params.get("artistId") or artist.get("id") or track.get("artist_id")
        name = params.get("artistName") or artist.get("name") or track.get("artist") or "Artist"
        return artist_id, name

    def _follow_artist(self, client: SpotifyClient, params: dict[str, Any], payload: dict) -> bool:
        artist_id, _ = self._artist_from(params, payload)
        if not artist_id:
            logger.warning("follow_artist has no artist id")
            return False
        client.request("PUT", "/me/following", params={"type": "artist", "ids": artist_id})
        logger.info(f"Followed artist {artist_id}")
        return True

    def _create_top_tracks_playlist(
        self, client: SpotifyClient, params: dict[str, Any], payload: dict
    ) -> bool:
        artist_id, artist_name = self._artist_from(params, payload)
        if not artist_id:
            logger.warning("create_playlist_with_artist_top_tracks has no artist id")
            return False

        top = client.request("GET", f"/artists/{artist_id}/top-tracks", params={"market": "US"})
        uris = [t["uri"] for t in top.get("tracks", [])[:TOP_TRACKS]]
        if not uris:
            logger.warning(f"No top tracks found for artist {artist_id}")
            return False

        playlist_id = self._create(
            client,
            params.get("playlistName") or f"Top {TOP_TRACKS} - {artist_name}",
            params.get("playlistDescription")
            or f"Top {TOP_TRACKS} tracks by {artist_name}, added automatically",
            params.get("isPublic", False),
        )
        client.request("POST", f"/playlists/{playlist_id}/tracks", json={"uris": uris})
        logger.info(f"Added {len(uris)} top tracks by {artist_name} to {playlist_id}")
        return True
