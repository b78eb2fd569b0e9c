"""Tests for the Gmail, Spotify and Notion pollers."""

import base64
import email
import threading
import time
from unittest.mock import patch

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from areaflow.adapters import CapabilityRegistry, GoogleAdapter, NotionAdapter, SpotifyAdapter
from areaflow.adapters.spotify import track_payload
from areaflow.engine import ReactionDispatcher
from areaflow.pollers import GmailPoller, NotionPoller, SpotifyPoller
from areaflow.pollers.gmail import PROCESSED_IDS

# =============================================================================
# Fakes and fixtures
# =============================================================================


class FakeGmail(GoogleAdapter):
    """Gmail adapter serving per-owner inboxes from memory."""

    def __init__(self):
        super().__init__()
        self.inboxes: dict[str, list[dict]] = {}
        self.fetches = 0
        self.error: Exception | None = None
        self.delay = 0.0
        self.hanging: set[str] = set()
        self.release = threading.Event()

    def _connect(self, owner_id, credentials):
        return "gmail-service"

    def list_recent_messages(self, owner_id, max_results=10):
        self.fetches += 1
        if self.delay:
            time.sleep(self.delay)
        if owner_id in self.hanging:
            self.release.wait(timeout=10)
        if self.error:
            raise self.error
        return list(self.inboxes.get(owner_id, []))[:max_results]

    def deliver(self, owner_id, message_id, subject="Hello", sender="friend@example.com"):
        """Add a message at the top of the inbox (Gmail lists newest first)."""
        message = {
            "id": message_id,
            "threadId": f"thread-{message_id}",
            "from": sender,
            "to": f"{owner_id}@example.com",
            "subject": subject,
            "messageIdHeader": f"<{message_id}@mail.example.com>",
            "snippet": f"snippet {message_id}",
            "labelIds": ["INBOX", "UNREAD"],
        }
        self.inboxes.setdefault(owner_id, []).insert(0, message)


class FakeSpotify(SpotifyAdapter):
    """Spotify adapter serving one owner's state from memory."""

    def __init__(self):
        super().__init__()
        self.recent: list[dict] = []
        self.saved_total = 0
        self.saved: list[dict] = []
        self.playlists: dict[str, dict] = {}
        self.followed: list[dict] = []

    def _connect(self, owner_id, credentials):
        return "spotify-client"

    def recently_played(self, owner_id, limit=20):
        return list(self.recent)

    def saved_tracks(self, owner_id, limit=1):
        items = [{"track": track, "added_at": None} for track in self.saved[:limit]]
        return {"total": self.saved_total, "items": items}

    def get_playlist(self, owner_id, playlist_id):
        return dict(self.playlists[playlist_id])

    def followed_artists(self, owner_id, limit=50):
        return list(self.followed)

    def play(self, track_id, artist_id, played_at):
        track = track_payload(
            {
                "id": track_id,
                "name": f"Song {track_id}",
                "uri": f"spotify:track:{track_id}",
                "artists": [{"id": artist_id, "name": f"Artist {artist_id}"}],
                "album": {"name": "Album"},
            }
        )
        self.recent.insert(0, {"track": track, "played_at": played_at})
        return track


class FakeNotion(NotionAdapter):
    """Notion adapter serving database rows and pages from memory."""

    def __init__(self):
        super().__init__()
        self.databases: dict[str, list[dict]] = {}
        self.pages: list[dict] = []

    def _connect(self, owner_id, credentials):
        return "notion-client"

    def query_database(self, owner_id, database_id, page_size=50):
        rows = sorted(
            self.databases.get(database_id, []),
            key=lambda row: row["lastEditedTime"],
            reverse=True,
        )
        return [dict(row, properties=dict(row["properties"])) for row in rows[:page_size]]

    def search_pages(self, owner_id, page_size=50):
        pages = sorted(self.pages, key=lambda page: page["lastEditedTime"], reverse=True)
        return [dict(page) for page in pages[:page_size]]

    def add_row(self, database_id, row_id, created, title="Row", **properties):
        row = {
            "id": row_id,
            "title": title,
            "url": f"https://notion.so/{row_id}",
            "databaseId": database_id,
            "parentPageId": None,
            "createdTime": created,
            "lastEditedTime": created,
            "properties": {"Name": title, **properties},
        }
        self.databases.setdefault(database_id, []).append(row)
        return row

    def edit_row(self, database_id, row_id, edited, **properties):
        for row in self.databases[database_id]:
            if row["id"] == row_id:
                row["lastEditedTime"] = edited
                row["properties"].update(properties)
                return row
        raise KeyError(row_id)

    def add_page(self, page_id, created, title="Page", parent=None):
        self.pages.append(
            {
                "id": page_id,
                "title": title,
                "url": f"https://notion.so/{page_id}",
                "databaseId": None,
                "parentPageId": parent,
                "createdTime": created,
                "lastEditedTime": created,
                "properties": {"title": title},
            }
        )


@pytest.fixture
def gmail():
    adapter = FakeGmail()
    yield adapter
    adapter.release.set()


@pytest.fixture
def spotify():
    return FakeSpotify()


@pytest.fixture
def notion():
    return FakeNotion()


@pytest.fixture
def poll_registry(chat, gmail, spotify, notion):
    return CapabilityRegistry([chat, gmail, spotify, notion])


@pytest.fixture
def poll_dispatcher(poll_registry, repository, credentials):
    for owner in ("alice", "bob"):
        credentials.set(owner, "google", {"access_token": f"token-{owner}"})
        credentials.set(owner, "spotify", {"access_token": f"token-{owner}"})
        credentials.set(owner, "notion", {"token": f"token-{owner}"})
    d = ReactionDispatcher(poll_registry, repository, credentials, timeout=5.0)
    yield d
    d.shutdown(wait=True)


@pytest.fixture
def gmail_poller(repository, poll_dispatcher, gmail):
    poller = GmailPoller(
        repository, poll_dispatcher, gmail, fetch_timeout=1.0, scheduler=BackgroundScheduler()
    )
    yield poller
    poller.stop()


@pytest.fixture
def spotify_poller(repository, poll_dispatcher, spotify):
    poller = SpotifyPoller(
        repository, poll_dispatcher, spotify, fetch_timeout=1.0, scheduler=BackgroundScheduler()
    )
    yield poller
    poller.stop()


@pytest.fixture
def notion_poller(repository, poll_dispatcher, notion):
    poller = NotionPoller(
        repository, poll_dispatcher, notion, fetch_timeout=1.0, scheduler=BackgroundScheduler()
    )
    yield poller
    poller.stop()


@pytest.fixture
def mail_rule(make_rule):
    def _make(kind="new_email_received", config=None, text="{{email.subject}}", **kwargs):
        return make_rule(
            action_provider="google",
            action_kind=kind,
            action_filter=config or {},
            parameters={"text": text},
            **kwargs,
        )

    return _make


@pytest.fixture
def music_rule(make_rule):
    def _make(kind, config=None, text="{{track.name}}", **kwargs):
        return make_rule(
            action_provider="spotify",
            action_kind=kind,
            action_filter=config or {},
            parameters={"text": text},
            **kwargs,
        )

    return _make


@pytest.fixture
def note_rule(make_rule):
    def _make(kind, config=None, text="{{item.title}}", **kwargs):
        return make_rule(
            action_provider="notion",
            action_kind=kind,
            action_filter=config if config is not None else {"databaseId": "db1"},
            parameters={"text": text},
            **kwargs,
        )

    return _make


# =============================================================================
# Gmail
# =============================================================================


class TestGmailPoller:
    """Tests for new-mail detection."""

    def test_cold_start_fires_nothing(self, gmail_poller, gmail, mail_rule, chat):
        mail_rule()
        gmail.deliver("alice", "m1")

        assert gmail_poller.poll_once() == 0
        assert chat.sent == []

    def test_unchanged_inbox_fires_nothing(self, gmail_poller, gmail, mail_rule, chat):
        mail_rule()
        gmail.deliver("alice", "m1")
        gmail_poller.poll_once()

        assert gmail_poller.poll_once() == 0
        assert chat.sent == []

    def test_one_new_message_fires_once(self, gmail_poller, gmail, mail_rule, chat):
        mail_rule()
        gmail.deliver("alice", "m1")
        gmail_poller.poll_once()

        gmail.deliver("alice", "m2", subject="Invoice")

        assert gmail_poller.poll_once() == 1
        assert chat.sent == [{"text": "Invoice"}]
        assert gmail_poller.poll_once() == 0

    def test_new_messages_fire_oldest_first(self, gmail_poller, gmail, mail_rule, chat):
        mail_rule()
        gmail_poller.poll_once()
        gmail.deliver("alice", "m1", subject="first")
        gmail.deliver("alice", "m2", subject="second")

        assert gmail_poller.poll_once() == 2
        assert [m["text"] for m in chat.sent] == ["first", "second"]

    def test_sender_and_subject_filters(self, gmail_poller, gmail, mail_rule, chat):
        mail_rule("email_from_sender", {"from": "boss@corp.com"}, text="boss")
        mail_rule("email_with_subject", {"subject": "urgent"}, text="urgent")
        gmail_poller.poll_once()

        gmail.deliver("alice", "m1", subject="URGENT: lunch", sender="Boss <boss@corp.com>")
        gmail.deliver("alice", "m2", subject="newsletter", sender="news@corp.com")
        gmail_poller.poll_once()

        assert sorted(m["text"] for m in chat.sent) == ["boss", "urgent"]

    def test_owners_are_isolated(self, gmail_poller, gmail, mail_rule, chat):
        mail_rule(owner_id="alice", text="alice: {{email.subject}}")
        mail_rule(owner_id="bob", text="bob: {{email.subject}}")
        gmail_poller.poll_once()

        gmail.deliver("bob", "b1", subject="hi bob")
        gmail_poller.poll_once()

        assert chat.sent == [{"text": "bob: hi bob"}]

    def test_disabled_rules_are_not_polled(self, gmail_poller, gmail, mail_rule):
        mail_rule(enabled=False)
        assert gmail_poller.poll_once() == 0
        assert gmail.fetches == 0

    def test_fetch_failure_keeps_cursor(self, gmail_poller, gmail, mail_rule, chat):
        mail_rule()
        gmail.deliver("alice", "m1")
        gmail.error = ConnectionError("offline")

        assert gmail_poller.poll_once() == 0
        assert gmail_poller.cursors.get_set("alice", PROCESSED_IDS) is None

        gmail.error = None
        gmail_poller.poll_once()
        assert chat.sent == []

    def test_fetch_timeout_skips_owner(self, gmail_poller, gmail, mail_rule, chat):
        mail_rule()
        gmail.delay = 1.5

        assert gmail_poller.poll_once() == 0
        assert gmail_poller.cursors.get_set("alice", PROCESSED_IDS) is None

    def test_hung_owners_do_not_starve_others(
        self, repository, poll_dispatcher, gmail, mail_rule, credentials, chat
    ):
        hung = ["carol", "dave", "erin", "frank"]
        for owner in hung:
            credentials.set(owner, "google", {"access_token": f"token-{owner}"})
            mail_rule(owner_id=owner)
        mail_rule(owner_id="bob", text="bob: {{email.subject}}")
        gmail.hanging.update(hung)
        poller = GmailPoller(
            repository,
            poll_dispatcher,
            gmail,
            fetch_timeout=0.3,
            max_workers=4,
            scheduler=BackgroundScheduler(),
        )
        try:
            poller.poll_once()
            assert all(poller.fetch_in_flight(owner) for owner in hung)
            assert poller.cursors.get_set("bob", PROCESSED_IDS) == set()

            gmail.deliver("bob", "b1", subject="still here")
            started = time.monotonic()
            assert poller.poll_once() == 1
            assert time.monotonic() - started < 0.3
        finally:
            gmail.release.set()
            poller.stop()

        assert chat.sent == [{"text": "bob: still here"}]

    def test_hung_owner_is_polled_again_once_fetch_returns(
        self, gmail_poller, gmail, mail_rule
    ):
        mail_rule()
        gmail.hanging.add("alice")
        gmail_poller.poll_once()
        assert gmail_poller.fetch_in_flight("alice")

        fetches = gmail.fetches
        gmail_poller.poll_once()
        assert gmail.fetches == fetches

        gmail.hanging.clear()
        gmail.release.set()
        deadline = time.monotonic() + 5
        while gmail_poller.fetch_in_flight("alice") and time.monotonic() < deadline:
            time.sleep(0.01)
        gmail_poller.poll_once()
        assert gmail_poller.cursors.get_set("alice", PROCESSED_IDS) == set()

    def test_small_cursor_cap_does_not_refire(
        self, repository, poll_dispatcher, gmail, mail_rule, chat
    ):
        mail_rule()
        for n in range(5):
            gmail.deliver("alice", f"m{n}")
        poller = GmailPoller(
            repository,
            poll_dispatcher,
            gmail,
            max_results=5,
            cursor_cap=3,
            scheduler=BackgroundScheduler(),
        )
        try:
            assert [poller.poll_once() for _ in range(3)] == [0, 0, 0]
        finally:
            poller.stop()

        assert chat.sent == []
        assert poller.cursors.set_cap == 5

    def test_reply_threads_onto_polled_email(self, gmail_poller, gmail, make_rule):
        make_rule(
            action_provider="google",
            action_kind="new_email_received",
            reaction_provider="google",
            reaction_kind="reply_to_email",
            parameters={"body": "Thanks"},
        )
        gmail_poller.poll_once()
        gmail.deliver("alice", "m1", subject="Question")

        with patch.object(gmail, "_send", return_value="sent-1") as send:
            assert gmail_poller.poll_once() == 1

        service, raw = send.call_args.args
        sent = email.message_from_bytes(base64.urlsafe_b64decode(raw))
        assert service == "gmail-service"
        assert send.call_args.kwargs["thread_id"] == "thread-m1"
        assert sent["Subject"] == "Re: Question"
        assert sent["In-Reply-To"] == "<m1@mail.example.com>"
        assert sent["References"] == "<m1@mail.example.com>"

    def test_missing_credentials_skips_owner(
        self, gmail_poller, gmail, mail_rule, credentials
    ):
        credentials.remove("bob", "google")
        mail_rule(owner_id="bob")

        assert gmail_poller.poll_once() == 0
        assert gmail.fetches == 0

    def test_records_poll_state(self, gmail_poller, gmail, mail_rule, repository):
        rule = mail_rule()
        gmail.deliver("alice", "m1")

        gmail_poller.poll_once()

        stored = repository.get(rule.id)
        assert stored.last_checked is not None
        assert stored.metadata["poll_cursor"][PROCESSED_IDS] == ["m1"]

    def test_reset_cursors_reseeds(self, gmail_poller, gmail, mail_rule, chat):
        mail_rule()
        gmail_poller.poll_once()
        gmail_poller.reset_cursors("alice")
        gmail.deliver("alice", "m1")

        assert gmail_poller.poll_once() == 0
        assert chat.sent == []

    def test_force_check(self, gmail_poller, gmail, mail_rule, chat):
        rule = mail_rule()
        gmail_poller.poll_once()
        gmail.deliver("alice", "m1", subject="now")

        assert gmail_poller.force_check(rule.id) is True
        assert chat.sent == [{"text": "now"}]
        assert gmail_poller.force_check("missing") is False

    def test_start_registers_interval_job(self, gmail_poller):
        with patch.object(gmail_poller.scheduler, "start"):
            gmail_poller.start()
        assert gmail_poller.scheduler.get_job("poll_google") is not None
        gmail_poller.stop()
        assert gmail_poller.scheduler.get_job("poll_google") is None


# =============================================================================
# Spotify
# =============================================================================


class TestSpotifyPoller:
    """Tests for listening, library, playlist and follow detection."""

    def test_new_track_played(self, spotify_poller, spotify, music_rule, chat):
        music_rule("new_track_played", text="{{track.name}} by {{artist.name}}")
        spotify.play("t1", "a1", "2024-01-01T10:00:00Z")

        assert spotify_poller.poll_once() == 0
        assert spotify_poller.poll_once() == 0

        spotify.play("t2", "a2", "2024-01-01T10:05:00Z")
        assert spotify_poller.poll_once() == 1
        assert chat.sent == [{"text": "Song t2 by Artist a2"}]

    def test_specific_artist_played(self, spotify_poller, spotify, music_rule, chat):
        music_rule("specific_artist_played", {"artistId": "a1"})
        spotify_poller.poll_once()

        spotify.play("t1", "a1", "2024-01-01T10:00:00Z")
        spotify.play("t2", "a2", "2024-01-01T10:03:00Z")
        spotify.play("t3", "a1", "2024-01-01T10:06:00Z")
        spotify_poller.poll_once()

        assert [m["text"] for m in chat.sent] == ["Song t1", "Song t3"]

    def test_new_track_saved(self, spotify_poller, spotify, music_rule, chat):
        music_rule("new_track_saved")
        spotify.saved_total = 10
        spotify_poller.poll_once()

        track = spotify.play("t9", "a1", None)
        spotify.saved = [track]
        spotify.saved_total = 11
        assert spotify_poller.poll_once() == 1

        spotify.saved_total = 10
        assert spotify_poller.poll_once() == 0
        assert chat.sent == [{"text": "Song t9"}]

    def test_playlist_updated(self, spotify_poller, spotify, music_rule, chat):
        music_rule("playlist_updated", {"playlistId": "p1"}, text="{{playlist.name}}")
        spotify.playlists["p1"] = {"id": "p1", "name": "Focus", "snapshot_id": "s1"}
        spotify_poller.poll_once()

        spotify.playlists["p1"]["snapshot_id"] = "s2"
        assert spotify_poller.poll_once() == 1
        assert chat.sent == [{"text": "Focus"}]

    def test_new_artist_followed(self, spotify_poller, spotify, music_rule, chat):
        music_rule("new_artist_followed", text="{{artist.name}}")
        spotify.followed = [{"id": "a1", "name": "First"}]
        spotify_poller.poll_once()

        spotify.followed = [{"id": "a2", "name": "Second"}, {"id": "a1", "name": "First"}]
        assert spotify_poller.poll_once() == 1
        assert chat.sent == [{"text": "Second"}]

    def test_only_needed_state_is_fetched(self, spotify_poller, spotify, music_rule):
        music_rule("new_track_played")
        with patch.object(spotify, "followed_artists") as followed:
            spotify_poller.poll_once()
        followed.assert_not_called()


# =============================================================================
# Notion
# =============================================================================


class TestNotionPoller:
    """Tests for database row, property and page detection."""

    def test_new_row_fires_once(self, notion_poller, notion, note_rule, chat):
        note_rule("database_item_created")
        notion.add_row("db1", "r1", "2024-01-01T10:00:00.000Z", title="Existing")

        assert notion_poller.poll_once() == 0

        notion.add_row("db1", "r2", "2024-01-01T10:05:00.000Z", title="Fresh")
        assert notion_poller.poll_once() == 1
        assert notion_poller.poll_once() == 0
        assert chat.sent == [{"text": "Fresh"}]

    def test_rows_are_scoped_to_their_database(self, notion_poller, notion, note_rule, chat):
        note_rule("database_item_created", {"databaseId": "db1"}, text="db1: {{item.title}}")
        note_rule("database_item_created", {"databaseId": "db2"}, text="db2: {{item.title}}")
        notion_poller.poll_once()

        notion.add_row("db2", "r1", "2024-01-01T10:00:00.000Z", title="Task")
        notion_poller.poll_once()

        assert chat.sent == [{"text": "db2: Task"}]

    def test_old_row_coming_back_is_not_new(self, notion_poller, notion, note_rule, chat):
        note_rule("database_item_created")
        notion.add_row("db1", "r1", "2024-01-01T10:00:00.000Z")
        notion_poller.poll_once()

        # Created before anything seen so far, surfaced only by a later edit
        notion.add_row("db1", "r0", "2023-06-01T08:00:00.000Z")
        notion.edit_row("db1", "r0", "2024-01-02T09:00:00.000Z")

        assert notion_poller.poll_once() == 0
        assert chat.sent == []

    def test_edit_fires_update(self, notion_poller, notion, note_rule, chat):
        note_rule("database_item_updated")
        notion.add_row("db1", "r1", "2024-01-01T10:00:00.000Z", title="Roadmap")
        notion_poller.poll_once()

        notion.edit_row("db1", "r1", "2024-01-01T11:00:00.000Z")
        assert notion_poller.poll_once() == 1
        assert notion_poller.poll_once() == 0
        assert chat.sent == [{"text": "Roadmap"}]

    def test_property_change(self, notion_poller, notion, note_rule, chat):
        note_rule(
            "database_property_changed",
            {"databaseId": "db1", "propertyName": "Status"},
            text="{{item.title}}: {{property.previous}} -> {{property.value}}",
        )
        notion.add_row("db1", "r1", "2024-01-01T10:00:00.000Z", title="Ship", Status="Todo")
        notion_poller.poll_once()

        notion.edit_row("db1", "r1", "2024-01-01T10:30:00.000Z", Points=3)
        assert notion_poller.poll_once() == 0

        notion.edit_row("db1", "r1", "2024-01-01T11:00:00.000Z", Status="Done")
        assert notion_poller.poll_once() == 1
        assert chat.sent == [{"text": "Ship: Todo -> Done"}]

    def test_new_row_property_only_seeds(self, notion_poller, notion, note_rule, chat):
        note_rule("database_property_changed", {"databaseId": "db1", "propertyName": "Status"})
        notion_poller.poll_once()

        notion.add_row("db1", "r1", "2024-01-01T10:00:00.000Z", Status="Todo")
        assert notion_poller.poll_once() == 0
        assert chat.sent == []

    def test_page_created_under_parent(self, notion_poller, notion, note_rule, chat):
        note_rule("page_created", {"parentPageId": "home"}, text="{{page.title}}")
        notion.add_page("p1", "2024-01-01T10:00:00.000Z", parent="home")
        notion_poller.poll_once()

        notion.add_page("p2", "2024-01-01T10:05:00.000Z", title="Elsewhere", parent="other")
        notion.add_page("p3", "2024-01-01T10:06:00.000Z", title="Notes", parent="home")
        notion_poller.poll_once()

        assert chat.sent == [{"text": "Notes"}]

    def test_only_watched_state_is_fetched(self, notion_poller, notion, note_rule):
        note_rule("database_item_created")
        with patch.object(notion, "search_pages") as search:
            notion_poller.poll_once()
        search.assert_not_called()
