import datetime

import pytest

from sorter_app.errors import ErrorCode, GameError
from sorter_app.models import GameResult, RankingEntry
from sorter_app.rankings import RankingService, process_rankings, statistics_doc_id


class FixedRandom:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


def _entries(n, user_prefix="u"):
    return [
        RankingEntry(id=f"e{i}", user_id=f"{user_prefix}{i}", display_name=f"P{i}",
                     score=1000 - i, time_elapsed=30, type="daily")
        for i in range(n)
    ]


def _seed(db, n, ranking_type="daily"):
    for i in range(n):
        db.collection("rankings").document(f"r{i:04d}").set({
            "userId": f"u{i}",
            "displayName": f"P{i}",
            "score": i,
            "timeElapsed": 30,
            "type": ranking_type,
        })


def test_statistics_doc_id_uses_jst_date():
    moment = datetime.datetime(2024, 5, 14, 16, 0, tzinfo=datetime.timezone.utc)
    assert statistics_doc_id("daily", moment) == "daily_2024-05-15"


def test_process_rankings_user_in_top():
    view = process_rankings(_entries(30), "u5", keep_top=10, context_range=2)
    assert view.user_rank == 6
    assert view.user_context == []
    assert len(view.top_rankings) == 10
    assert view.total_count == 30
    assert view.top_rankings[0].rank == 1


def test_process_rankings_user_outside_top_gets_context():
    view = process_rankings(_entries(30), "u20", keep_top=10, context_range=2)
    assert view.user_rank == 21
    assert [e.user_id for e in view.user_context] == ["u18", "u19", "u20", "u21", "u22"]


def test_process_rankings_context_clamped_at_end():
    view = process_rankings(_entries(12), "u11", keep_top=10, context_range=3)
    assert [e.user_id for e in view.user_context] == ["u8", "u9", "u10", "u11"]


def test_process_rankings_unknown_user():
    view = process_rankings(_entries(5), "nobody")
    assert view.user_rank == -1
    assert view.user_context == []


def test_submit_score_without_cleanup(firestore_db, now):
    service = RankingService(firestore_db, rng=FixedRandom(0.99), clock=lambda: now)
    result = service.submit_score_and_cleanup("u1", "太郎", 15, 15, 20, 42, "daily")

    assert result["success"] is True
    assert result["deleted"] == 0
    doc = firestore_db.docs("rankings")[result["id"]]
    assert doc["score"] == 15
    assert doc["timeElapsed"] == 42
    assert doc["timestamp"] == now
    assert doc["retention"] == {"level": "candidate", "expires": now + datetime.timedelta(days=30)}


def test_submit_score_rejects_unknown_type(firestore_db):
    service = RankingService(firestore_db)
    with pytest.raises(GameError) as exc:
        service.submit_score_and_cleanup("u1", "太郎", 1, 1, 1, 1, "yearly")
    assert exc.value.code == ErrorCode.ERR_INVALID_RANKING_TYPE


def test_cleanup_skipped_below_threshold(firestore_db, now):
    _seed(firestore_db, 50)
    service = RankingService(firestore_db, rng=FixedRandom(0.0), clock=lambda: now)
    result = service.submit_score_and_cleanup("u1", "太郎", 5, 5, 20, 42, "daily")
    assert result["deleted"] == 0
    assert "ranking_statistics" not in firestore_db.data


def test_cleanup_deletes_low_scores_over_threshold(firestore_db, now):
    _seed(firestore_db, 1001)
    firestore_db.collection("rankings").document("weekly1").set({"userId": "w", "score": 0, "timeElapsed": 1, "type": "weekly"})

    service = RankingService(firestore_db, rng=FixedRandom(0.0), clock=lambda: now)
    result = service.submit_score_and_cleanup("new", "新人", 2000, 20, 20, 10, "daily")

    assert result["deleted"] == 50
    remaining = firestore_db.docs("rankings")
    # 上位220件（スコア降順）は残り、その次の50件が削除される
    scores = {d["score"] for d in remaining.values() if d["type"] == "daily"}
    assert set(range(781, 1001)) <= scores
    assert not scores & set(range(731, 781))
    assert 730 in scores
    assert "weekly1" in remaining
    assert result["id"] in remaining

    stats = firestore_db.docs("ranking_statistics")[statistics_doc_id("daily", now)]
    assert stats["deletedEntries"] == 50
    assert stats["rankingType"] == "daily"


def test_submit_result(firestore_db, now):
    service = RankingService(firestore_db, rng=FixedRandom(0.99), clock=lambda: now)
    result = service.submit_result("u1", "太郎", GameResult(18, 18, 20, 37), "weekly")
    doc = firestore_db.docs("rankings")[result["id"]]
    assert (doc["score"], doc["totalCards"], doc["timeElapsed"], doc["type"]) == (18, 20, 37, "weekly")


def test_fetch_and_process_rankings(firestore_db):
    _seed(firestore_db, 15)
    service = RankingService(firestore_db)
    view = service.fetch_and_process_rankings("daily", "u3")
    assert view.total_count == 15
    assert view.top_rankings[0].score == 14
    assert view.user_rank == 12


def test_fetch_rankings_orders_by_score_then_time(firestore_db):
    ref = firestore_db.collection("rankings")
    ref.document("a").set({"userId": "a", "score": 10, "timeElapsed": 50, "type": "all_time"})
    ref.document("b").set({"userId": "b", "score": 10, "timeElapsed": 20, "type": "all_time"})
    ref.document("c").set({"userId": "c", "score": 12, "timeElapsed": 90, "type": "daily"})

    entries = RankingService(firestore_db).fetch_rankings(limit=2)
    assert [(e.user_id, e.rank) for e in entries] == [("c", 1), ("b", 2)]


def test_fetch_rankings_includes_legacy_time_field(firestore_db):
    ref = firestore_db.collection("rankings")
    ref.document("new").set({"userId": "n", "score": 10, "timeElapsed": 50, "type": "all_time"})
    ref.document("legacy").set({"userId": "l", "score": 10, "time": 20, "type": "all_time"})

    entries = RankingService(firestore_db).fetch_rankings()
    assert [(e.user_id, e.time_elapsed, e.rank) for e in entries] == [("l", 20, 1), ("n", 50, 2)]
