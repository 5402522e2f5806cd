import datetime

from sorter_app.errors import ErrorCode, GameError
from sorter_app.models import GameResult, GameSession, Player, RankingEntry, guest_display_name


def test_guest_display_name():
    assert guest_display_name("abcdefgh") == "Guest-abcde"
    assert guest_display_name("abcdefgh", "  ") == "Guest-abcde"
    assert Player("u1", "花子").name == "花子"


def test_game_result_accuracy():
    assert GameResult(15, 15, 20, 30).accuracy == 75
    assert GameResult(2, 2, 3, 30).accuracy == 67
    assert GameResult(0, 0, 0, 0).accuracy == 0


def test_session_from_dict_tolerates_missing_fields():
    session = GameSession.from_dict({"startTime": 10, "isActive": True}, "s1")
    assert session.id == "s1"
    assert session.players == {}
    assert session.cars == []
    assert session.to_dict()["lastActiveTime"] == 10


def test_ranking_entry_reads_legacy_fields():
    date = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
    entry = RankingEntry.from_dict("r1", {"userId": "u", "score": 5, "time": 42, "date": date})
    assert entry.time_elapsed == 42
    assert entry.timestamp == date
    assert entry.type == "all_time"
    assert entry.retention_level is None


def test_game_error_str():
    error = GameError(ErrorCode.ERR_ROOM_FULL, "満員")
    assert str(error) == "[ERR_ROOM_FULL] 満員"
    assert GameError(ErrorCode.ERR_NOT_HOST).message == "ERR_NOT_HOST"
