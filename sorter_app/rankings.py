"""
ランキング登録・取得モジュール

- スコア登録時に一定確率で古いランキングを間引く
- 上位ランキングと自分の前後の順位を取得する
"""

import datetime
import logging
import random
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import pytz
from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

from sorter_app.constants import (
    RANKING_CONFIG,
    RANKING_STATISTICS_COLLECTION,
    RANKING_TIMEZONE,
    RANKING_TYPES,
    RANKINGS_COLLECTION,
    RETENTION_CANDIDATE,
    RETENTION_DAYS,
)
from sorter_app.errors import ErrorCode, GameError
from sorter_app.models import GameResult, RankingEntry

logger = logging.getLogger(__name__)

JST = pytz.timezone(RANKING_TIMEZONE)


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def statistics_doc_id(ranking_type: str, now: datetime.datetime) -> str:
    """統計ドキュメントID（{type}_{JST日付}）"""
    return f"{ranking_type}_{now.astimezone(JST).date().isoformat()}"


def validate_ranking_type(ranking_type: str):
    if ranking_type not in RANKING_TYPES:
        raise GameError(ErrorCode.ERR_INVALID_RANKING_TYPE, f"不正なランキングタイプ: {ranking_type}")


@dataclass
class RankingView:
    """表示用に選別したランキング"""
    top_rankings: List[RankingEntry] = field(default_factory=list)
    user_rank: int = -1
    user_context: List[RankingEntry] = field(default_factory=list)
    total_count: int = 0


def process_rankings(entries: List[RankingEntry], user_id: Optional[str] = None,
                     keep_top: int = RANKING_CONFIG["KEEP_TOP"],
                     context_range: int = RANKING_CONFIG["CONTEXT_RANGE"]) -> RankingView:
    """
    スコア順に並んだエントリから表示用データを選別

    ユーザーが上位 keep_top 位の外にいる場合のみ前後 context_range 件を返す。
    """
    user_rank = -1
    user_index = -1
    for index, entry in enumerate(entries):
        entry.rank = index + 1
        if user_id and user_index < 0 and entry.user_id == user_id:
            user_rank = index + 1
            user_index = index

    user_context = []
    if user_id and user_index >= 0 and user_rank > keep_top:
        start = max(0, user_index - context_range)
        end = min(len(entries), user_index + context_range + 1)
        user_context = entries[start:end]

    return RankingView(
        top_rankings=entries[:keep_top],
        user_rank=user_rank,
        user_context=user_context,
        total_count=len(entries),
    )


class RankingService:
    """rankings コレクションの読み書き"""

    def __init__(self, db, rng: random.Random = None, clock: Callable[[], datetime.datetime] = None):
        self.db = db
        self.rng = rng or random.Random()
        self.clock = clock or utc_now

    @property
    def rankings_ref(self):
        return self.db.collection(RANKINGS_COLLECTION)

    def submit_score_and_cleanup(self, user_id: str, display_name: str, score: int, correct_answers: int,
                                 total_cards: int, time_elapsed: int, game_type: str) -> dict:
        """
        新しいスコアを登録し、必要に応じてランキングデータをクリーンアップする

        クリーンアップは CLEANUP_PROBABILITY の確率で実行され、件数が
        CLEANUP_THRESHOLD を超えている場合のみ上位+コンテキスト範囲外を削除する。
        """
        validate_ranking_type(game_type)
        try:
            batch = self.db.batch()
            timestamp = self.clock()

            # 1. 新しいスコアを登録
            new_ref = self.rankings_ref.document()
            batch.set(new_ref, {
                "userId": user_id,
                "displayName": display_name,
                "score": score,
                "correctAnswers": correct_answers,
                "totalCards": total_cards,
                "timeElapsed": time_elapsed,
                "type": game_type,
                "timestamp": timestamp,
                "retention": {
                    "level": RETENTION_CANDIDATE,
                    "expires": timestamp + datetime.timedelta(days=RETENTION_DAYS),
                },
            })

            # 2. ランダムな確率でクリーンアップを実行
            deleted_count = 0
            if self.rng.random() < RANKING_CONFIG["CLEANUP_PROBABILITY"]:
                deleted_count = self._cleanup_overflow(batch, game_type, timestamp)

            batch.commit()
            return {"success": True, "id": new_ref.id, "deleted": deleted_count}

        except Exception as e:
            logger.error(f"スコア登録エラー: {e}")
            raise

    def submit_result(self, user_id: str, display_name: str, result: GameResult,
                      game_type: str = "all_time") -> dict:
        """ゲーム結果をランキングに登録"""
        return self.submit_score_and_cleanup(
            user_id, display_name, result.score, result.correct_answers,
            result.total_answers, result.time_in_seconds, game_type,
        )

    def _cleanup_overflow(self, batch, game_type: str, timestamp: datetime.datetime) -> int:
        type_query = self.rankings_ref.where(filter=FieldFilter("type", "==", game_type))

        # 総数を確認
        count_result = type_query.count().get()
        total_count = int(count_result[0][0].value)
        if total_count <= RANKING_CONFIG["CLEANUP_THRESHOLD"]:
            return 0

        # 上位N位 + コンテキスト範囲以降のデータを取得
        skip = RANKING_CONFIG["KEEP_TOP"] + RANKING_CONFIG["CONTEXT_RANGE"] * 2
        old_docs = (
            type_query
            .order_by("score", direction=firestore.Query.DESCENDING)
            .offset(skip)
            .limit(RANKING_CONFIG["CLEANUP_BATCH_SIZE"])
            .get()
        )

        deleted_count = 0
        for doc in old_docs:
            batch.delete(doc.reference)
            deleted_count += 1

        # 統計情報を更新
        if deleted_count > 0:
            stats_ref = self.db.collection(RANKING_STATISTICS_COLLECTION).document(
                statistics_doc_id(game_type, timestamp))
            batch.set(stats_ref, {
                "rankingType": game_type,
                "date": timestamp,
                "deletedEntries": firestore.Increment(deleted_count),
                "lastCleanup": timestamp,
            }, merge=True)
            logger.info(f"ランキングクリーンアップ: {game_type} {deleted_count}件削除 (総数 {total_count}件)")

        return deleted_count

    def fetch_and_process_rankings(self, ranking_type: str, user_id: Optional[str] = None) -> RankingView:
        """ランキングデータを取得し、表示用に処理する"""
        validate_ranking_type(ranking_type)
        try:
            query = (
                self.rankings_ref
                .where(filter=FieldFilter("type", "==", ranking_type))
                .order_by("score", direction=firestore.Query.DESCENDING)
                .limit(RANKING_CONFIG["FETCH_LIMIT"])
            )
            entries = [RankingEntry.from_dict(doc.id, doc.to_dict() or {}) for doc in query.stream()]
            return process_rankings(entries, user_id)
        except Exception as e:
            logger.error(f"ランキング取得エラー: {e}")
            raise

    def fetch_rankings(self, limit: int = 100) -> List[RankingEntry]:
        """
        全体ランキング取得（スコア降順・経過時間昇順）

        旧形式（time フィールド）のエントリも含めるため、経過時間の並び替えはクエリ後に行う。
        """
        query = (
            self.rankings_ref
            .order_by("score", direction=firestore.Query.DESCENDING)
            .limit(max(limit, RANKING_CONFIG["FETCH_LIMIT"]))
        )
        entries = [RankingEntry.from_dict(doc.id, doc.to_dict() or {}) for doc in query.stream()]
        entries.sort(key=lambda entry: (-entry.score, entry.time_elapsed))
        entries = entries[:limit]
        for index, entry in enumerate(entries):
            entry.rank = index + 1
        return entries
