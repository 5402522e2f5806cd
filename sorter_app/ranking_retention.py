"""
ランキング保持（間引き）処理

カレンダー期間（日・週・月）ごとにランキングを区切り、
期間の新しさに応じた保持レベルで上位N件と指定ユーザー前後の順位だけを残す。

保持レベル:
- current  : 今の期間
- previous : 直前の期間
- older    : さらに前の数期間
- archive  : それより古い期間（下限なし）

期間の境界は毎回の実行時刻から再計算する（カーソルは保存しない）。
削除件数は削除と同じバッチ内で ranking_statistics に Increment で加算するため、
同じ境界で再実行しても二重に集計されない。
"""

import datetime
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

import pytz
from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

from sorter_app.constants import (
    FIRESTORE_BATCH_LIMIT,
    RANKING_CONFIG,
    RANKING_STATISTICS_COLLECTION,
    RANKING_TIMEZONE,
    RANKING_TYPES,
    RANKINGS_COLLECTION,
    RETENTION_KEEP_TOP,
    RETENTION_LEVELS,
    RETENTION_WINDOW,
)
from sorter_app.models import RankingEntry
from sorter_app.rankings import statistics_doc_id, utc_now, validate_ranking_type

logger = logging.getLogger(__name__)

JST = pytz.timezone(RANKING_TIMEZONE)

# all_time ランキングは期間を1つだけ持つ
ALL_TIME_PERIOD = datetime.date.min


def to_jst_datetime(timestamp, default: datetime.datetime = None) -> datetime.datetime:
    """タイムスタンプから日本時間のdatetimeを安全に取得。
    - datetime / Firestore Timestamp / ISO文字列 / エポックミリ秒 に対応
    - 解釈できない場合は default（未指定なら現在時刻）
    """
    fallback = default or datetime.datetime.now(JST)
    if timestamp is None:
        return fallback.astimezone(JST)
    if isinstance(timestamp, datetime.datetime):
        if timestamp.tzinfo is None:
            return pytz.UTC.localize(timestamp).astimezone(JST)
        return timestamp.astimezone(JST)
    if isinstance(timestamp, (int, float)):
        # 1e11 を超える値はミリ秒とみなす
        seconds = timestamp / 1000 if timestamp > 1e11 else timestamp
        return datetime.datetime.fromtimestamp(seconds, tz=pytz.UTC).astimezone(JST)
    if isinstance(timestamp, str):
        try:
            return to_jst_datetime(datetime.datetime.fromisoformat(timestamp.replace("Z", "+00:00")), fallback)
        except ValueError:
            return fallback.astimezone(JST)
    if hasattr(timestamp, "seconds"):
        return datetime.datetime.fromtimestamp(float(timestamp.seconds), tz=pytz.UTC).astimezone(JST)
    return fallback.astimezone(JST)


def period_start(moment: datetime.datetime, ranking_type: str) -> datetime.date:
    """日本時間で見た期間の開始日"""
    day = moment.astimezone(JST).date()
    if ranking_type == "daily":
        return day
    if ranking_type == "weekly":
        return day - datetime.timedelta(days=day.weekday())
    if ranking_type == "monthly":
        return day.replace(day=1)
    return ALL_TIME_PERIOD


def period_distance(current: datetime.date, start: datetime.date, ranking_type: str) -> int:
    """現在の期間から何期間前か（未来は0）"""
    if ranking_type == "daily":
        distance = (current - start).days
    elif ranking_type == "weekly":
        distance = (current - start).days // 7
    elif ranking_type == "monthly":
        distance = (current.year * 12 + current.month) - (start.year * 12 + start.month)
    else:
        distance = 0
    return max(distance, 0)


def retention_level(distance: int) -> str:
    """期間距離から保持レベルを決定"""
    upper = 0
    for level in RETENTION_LEVELS[:-1]:
        upper += RETENTION_WINDOW[level]
        if distance < upper:
            return level
    return RETENTION_LEVELS[-1]


def ranking_sort_key(entry: RankingEntry, moment: datetime.datetime):
    """スコア降順 → 経過時間昇順 → 登録が早い順 → ID"""
    return (-entry.score, entry.time_elapsed, moment, entry.id)


@dataclass
class PlannedEntry:
    entry: RankingEntry
    period: datetime.date
    level: str
    rank: int

    @property
    def changed(self) -> bool:
        retention = self.entry.retention or {}
        return retention.get("level") != self.level or retention.get("rank") != self.rank


@dataclass
class RetentionPlan:
    """1ランキングタイプ分の保持計画"""
    ranking_type: str
    generated_at: datetime.datetime
    keep: List[PlannedEntry] = field(default_factory=list)
    remove: List[PlannedEntry] = field(default_factory=list)

    @property
    def removed_by_level(self) -> Dict[str, int]:
        counts: Dict[str, int] = defaultdict(int)
        for planned in self.remove:
            counts[planned.level] += 1
        return dict(counts)

    def summary(self) -> Dict[str, object]:
        return {
            "ranking_type": self.ranking_type,
            "kept": len(self.keep),
            "removed": len(self.remove),
            "removed_by_level": self.removed_by_level,
            "periods": len({p.period for p in self.keep + self.remove}),
        }


def plan_retention(entries: Iterable[RankingEntry], ranking_type: str, now: datetime.datetime,
                   pinned_ids: Iterable[str] = (),
                   keep_top: Dict[str, int] = None,
                   context_range: int = RANKING_CONFIG["CONTEXT_RANGE"]) -> RetentionPlan:
    """
    保持計画を作成（Firestoreには触れない）

    pinned_ids はエントリIDまたはユーザーIDで、該当エントリの前後 context_range 件を残す。
    """
    validate_ranking_type(ranking_type)
    keep_top = keep_top or RETENTION_KEEP_TOP
    pinned = set(pinned_ids)
    now_jst = now.astimezone(JST)
    current = period_start(now_jst, ranking_type)

    # 期間ごとに振り分け（タイムスタンプがないエントリは現在の期間として扱う）
    groups: Dict[datetime.date, List[tuple]] = defaultdict(list)
    for entry in entries:
        moment = to_jst_datetime(entry.timestamp, default=now_jst)
        groups[period_start(moment, ranking_type)].append((entry, moment))

    plan = RetentionPlan(ranking_type=ranking_type, generated_at=now)
    for start in sorted(groups, reverse=True):
        level = retention_level(period_distance(current, start, ranking_type))
        ranked = sorted(groups[start], key=lambda item: ranking_sort_key(*item))

        keep_indexes = set(range(min(keep_top[level], len(ranked))))
        for index, (entry, _) in enumerate(ranked):
            if entry.id in pinned or entry.user_id in pinned:
                keep_indexes.update(range(max(0, index - context_range),
                                          min(len(ranked), index + context_range + 1)))

        for index, (entry, _) in enumerate(ranked):
            planned = PlannedEntry(entry=entry, period=start, level=level, rank=index + 1)
            if index in keep_indexes:
                plan.keep.append(planned)
            else:
                plan.remove.append(planned)

    return plan


class RankingRetention:
    """保持計画の作成と Firestore への反映"""

    def __init__(self, db, clock: Callable[[], datetime.datetime] = None,
                 batch_limit: int = FIRESTORE_BATCH_LIMIT):
        self.db = db
        self.clock = clock or utc_now
        self.batch_limit = batch_limit

    def load_entries(self, ranking_type: str) -> List[RankingEntry]:
        query = self.db.collection(RANKINGS_COLLECTION).where(filter=FieldFilter("type", "==", ranking_type))
        return [RankingEntry.from_dict(doc.id, doc.to_dict() or {}) for doc in query.stream()]

    def plan(self, ranking_type: str, pinned_ids: Iterable[str] = (),
             now: Optional[datetime.datetime] = None) -> RetentionPlan:
        now = now or self.clock()
        return plan_retention(self.load_entries(ranking_type), ranking_type, now, pinned_ids)

    def apply(self, plan: RetentionPlan) -> Dict[str, int]:
        """
        計画を反映する

        削除と統計の加算は同じバッチでコミットするため、バッチ単位で整合する。
        """
        rankings_ref = self.db.collection(RANKINGS_COLLECTION)
        stats_ref = self.db.collection(RANKING_STATISTICS_COLLECTION).document(
            statistics_doc_id(plan.ranking_type, plan.generated_at))

        result = {"deleted": 0, "updated": 0, "batches": 0, "failed_batches": 0}

        # 削除（統計の加算を1件分確保するため batch_limit - 1 件ずつ）
        chunk_size = max(self.batch_limit - 1, 1)
        for i in range(0, len(plan.remove), chunk_size):
            chunk = plan.remove[i:i + chunk_size]
            batch = self.db.batch()
            by_level: Dict[str, int] = defaultdict(int)
            score_total = 0
            for planned in chunk:
                batch.delete(rankings_ref.document(planned.entry.id))
                by_level[planned.level] += 1
                score_total += planned.entry.score
            batch.set(stats_ref, {
                "rankingType": plan.ranking_type,
                "date": plan.generated_at,
                "deletedEntries": firestore.Increment(len(chunk)),
                "deletedByLevel": {level: firestore.Increment(n) for level, n in by_level.items()},
                "deletedScoreTotal": firestore.Increment(score_total),
                "lastCleanup": plan.generated_at,
            }, merge=True)
            if self._commit(batch, f"削除 {len(chunk)}件"):
                result["deleted"] += len(chunk)
            else:
                result["failed_batches"] += 1
            result["batches"] += 1

        # 保持レベル・順位の更新（変化があるものだけ）
        changed = [planned for planned in plan.keep if planned.changed]
        for i in range(0, len(changed), self.batch_limit):
            chunk = changed[i:i + self.batch_limit]
            batch = self.db.batch()
            for planned in chunk:
                batch.update(rankings_ref.document(planned.entry.id), {
                    "retention.level": planned.level,
                    "retention.rank": planned.rank,
                })
            if self._commit(batch, f"更新 {len(chunk)}件"):
                result["updated"] += len(chunk)
            else:
                result["failed_batches"] += 1
            result["batches"] += 1

        return result

    def _commit(self, batch, label: str) -> bool:
        try:
            batch.commit()
            return True
        except Exception as e:
            # 失敗したバッチは次回の実行で再計算される
            logger.error(f"ランキング保持バッチのコミットに失敗 ({label}): {e}")
            return False

    def run(self, ranking_type: str, pinned_ids: Iterable[str] = (), dry_run: bool = False) -> Dict[str, object]:
        """1ランキングタイプの保持処理を実行"""
        plan = self.plan(ranking_type, pinned_ids)
        summary = plan.summary()
        if dry_run:
            logger.info(f"[DRY RUN] ランキング保持計画: {summary}")
            return summary
        summary.update(self.apply(plan))
        logger.info(f"ランキング保持処理完了: {summary}")
        return summary

    def run_all(self, pinned_ids: Iterable[str] = (), dry_run: bool = False) -> Dict[str, Dict[str, object]]:
        """全ランキングタイプの保持処理を実行（タイプ単位で失敗を分離）"""
        pinned_ids = list(pinned_ids)
        results = {}
        for ranking_type in RANKING_TYPES:
            try:
                results[ranking_type] = self.run(ranking_type, pinned_ids, dry_run)
            except Exception as e:
                logger.error(f"ランキング保持処理エラー ({ranking_type}): {e}")
                results[ranking_type] = {"ranking_type": ranking_type, "error": str(e)}
        return results
