import pytest
from datetime import datetime, timedelta, timezone

from api.services.selection import (
    OutOfRange,
    RetrievalSessionManager,
    Selected,
    preview,
)
from lib.keyed_store import InMemoryKeyedStore

from conftest import SENDER, make_media

BASE = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def candidates(count):
    return [make_media(i + 1, f'photo-{i + 1}.jpg', BASE - timedelta(days=i)) for i in range(count)]


@pytest.fixture
def sessions(fake_clock):
    return RetrievalSessionManager(InMemoryKeyedStore(clock=fake_clock), ttl_seconds=600)


@pytest.mark.parametrize("text,expected", [
    ("2", True),
    (" 10 ", True),
    ("2a", False),
    ("-1", False),
    ("dos", False),
    ("", False),
    (None, False),
])
def test_is_selection_reply(text, expected):
    assert RetrievalSessionManager.is_selection_reply(text) is expected


def test_preview_truncates_to_sixty():
    assert preview(None) is None
    assert preview("short") == "short"
    long = preview("x" * 100)
    assert len(long) == 60
    assert long.endswith("...")


class TestRetrievalSessionManager:
    def test_menu_lists_candidates_in_order(self, sessions):
        files = candidates(3)
        files[1] = make_media(2, 'photo-2.jpg', BASE - timedelta(days=1), description='Recibo de luz ' * 10)

        menu = sessions.begin(SENDER, files)

        lines = menu.splitlines()
        assert lines[0] == "📁 Encontré 3 archivo(s):"
        assert "1. photo-1.jpg (2024-01-10)" in lines
        assert "2. photo-2.jpg (2024-01-09)" in lines
        assert "3. photo-3.jpg (2024-01-08)" in lines
        assert menu.index("1. photo-1") < menu.index("2. photo-2") < menu.index("3. photo-3")
        description_line = lines[lines.index("2. photo-2.jpg (2024-01-09)") + 1]
        assert len(description_line.strip()) <= 60
        assert "del 1 al 3" in lines[-1]

    def test_only_first_ten_are_kept(self, sessions):
        menu = sessions.begin(SENDER, candidates(14))

        pending = sessions.pending(SENDER)
        assert [m.id for m in pending.candidates] == list(range(1, 11))
        assert "Encontré 14 archivo(s)" in menu
        assert "11. " not in menu
        assert "del 1 al 10" in menu

    def test_selection_round_trip(self, sessions):
        sessions.begin(SENDER, candidates(3))

        outcome = sessions.select(SENDER, "2")

        assert isinstance(outcome, Selected)
        assert outcome.media_file.id == 2
        assert not sessions.has_pending(SENDER)

    @pytest.mark.parametrize("reply", ["0", "4", "99"])
    def test_out_of_range_keeps_pending(self, sessions, reply):
        sessions.begin(SENDER, candidates(3))

        outcome = sessions.select(SENDER, reply)

        assert isinstance(outcome, OutOfRange)
        assert "1 al 3" in outcome.prompt
        assert len(sessions.pending(SENDER).candidates) == 3

        retry = sessions.select(SENDER, "3")
        assert isinstance(retry, Selected)
        assert retry.media_file.id == 3

    def test_nothing_pending(self, sessions):
        assert sessions.select(SENDER, "1") is None

    def test_pending_expires(self, sessions, fake_clock):
        sessions.begin(SENDER, candidates(2))
        fake_clock.advance(599)
        assert sessions.has_pending(SENDER)
        fake_clock.advance(2)
        assert not sessions.has_pending(SENDER)
        assert sessions.select(SENDER, "1") is None

    def test_new_query_replaces_pending(self, sessions):
        sessions.begin(SENDER, candidates(3))
        sessions.begin(SENDER, [make_media(50, 'audio-a.ogg', BASE), make_media(51, 'audio-b.ogg', BASE)])

        outcome = sessions.select(SENDER, "1")
        assert outcome.media_file.id == 50

    def test_conversations_are_isolated(self, sessions):
        sessions.begin(SENDER, candidates(2))
        assert not sessions.has_pending('whatsapp:+15559998888')
        assert sessions.select('whatsapp:+15559998888', "1") is None
        assert sessions.has_pending(SENDER)
