"""
ゲーム分析データ

- 削除前のセッションから分析用サマリーを抽出
- game_analytics / ranking_statistics の集計レポート（pandas）
"""

import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import pytz

from sorter_app.constants import (
    DEFAULT_MAX_PLAYERS,
    GAME_ANALYTICS_COLLECTION,
    RANKING_STATISTICS_COLLECTION,
    RANKING_TIMEZONE,
)

logger = logging.getLogger(__name__)

JST = pytz.timezone(RANKING_TIMEZONE)

GAME_SUMMARY_COLUMNS = ["date", "games", "completed", "completion_rate", "avg_players", "avg_duration"]
RANKING_SUMMARY_COLUMNS = ["rankingType", "date", "deletedEntries", "deletedScoreTotal"]


def build_analytics_record(room_id: str, room_data: Dict[str, Any], now_ms: int) -> Dict[str, Any]:
    """分析に有用なデータをセッションから抽出"""
    start_time = room_data.get("startTime")
    end_time = room_data.get("endTime")
    duration = None
    if end_time is not None and start_time is not None:
        duration = (end_time - start_time) / 1000

    return {
        "roomId": room_id,
        "playerCount": len(room_data.get("players") or {}),
        "maxPlayers": room_data.get("maxPlayers") or DEFAULT_MAX_PLAYERS,
        "gameCompleted": not room_data.get("isActive", False),
        "duration": duration,
        "createdAt": start_time,
        "archivedAt": now_ms,
    }


def _jst_date_from_ms(value) -> Optional[datetime.date]:
    if value is None:
        return None
    try:
        return datetime.datetime.fromtimestamp(value / 1000, tz=pytz.UTC).astimezone(JST).date()
    except (TypeError, ValueError, OverflowError):
        return None


def summarize_game_analytics(records: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    """作成日（日本時間）ごとのゲーム数・完了率・平均人数・平均プレイ時間"""
    df = pd.DataFrame(list(records))
    if df.empty:
        return pd.DataFrame(columns=GAME_SUMMARY_COLUMNS)

    for column, default in (("createdAt", None), ("gameCompleted", False), ("playerCount", 0), ("duration", None)):
        if column not in df.columns:
            df[column] = default

    df["date"] = df["createdAt"].map(_jst_date_from_ms)
    df = df.dropna(subset=["date"])
    if df.empty:
        return pd.DataFrame(columns=GAME_SUMMARY_COLUMNS)

    df["gameCompleted"] = df["gameCompleted"].fillna(False).astype(bool)
    df["duration"] = pd.to_numeric(df["duration"], errors="coerce")

    summary = df.groupby("date").agg(
        games=("date", "size"),
        completed=("gameCompleted", "sum"),
        avg_players=("playerCount", "mean"),
        avg_duration=("duration", "mean"),
    ).reset_index()
    summary["completed"] = summary["completed"].astype(int)
    summary["completion_rate"] = (summary["completed"] / summary["games"] * 100).round(1)
    return summary[GAME_SUMMARY_COLUMNS].sort_values("date").reset_index(drop=True)


def summarize_ranking_statistics(records: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    """ランキングタイプ・日付ごとの削除件数"""
    rows = []
    for record in records:
        date = record.get("date")
        if isinstance(date, datetime.datetime):
            date = date.astimezone(JST).date() if date.tzinfo else date.date()
        rows.append({
            "rankingType": record.get("rankingType"),
            "date": date,
            "deletedEntries": int(record.get("deletedEntries", 0) or 0),
            "deletedScoreTotal": int(record.get("deletedScoreTotal", 0) or 0),
        })
    if not rows:
        return pd.DataFrame(columns=RANKING_SUMMARY_COLUMNS)

    df = pd.DataFrame(rows)
    summary = df.groupby(["rankingType", "date"], as_index=False)[["deletedEntries", "deletedScoreTotal"]].sum()
    return summary.sort_values(["rankingType", "date"]).reset_index(drop=True)


class AnalyticsReporter:
    """Firestore から分析データを読み込んで集計する"""

    def __init__(self, db):
        self.db = db

    def _load(self, collection: str) -> List[Dict[str, Any]]:
        try:
            return [doc.to_dict() or {} for doc in self.db.collection(collection).stream()]
        except Exception as e:
            logger.error(f"{collection} の読み込みエラー: {e}")
            return []

    def build_report(self) -> Dict[str, pd.DataFrame]:
        games = summarize_game_analytics(self._load(GAME_ANALYTICS_COLLECTION))
        rankings = summarize_ranking_statistics(self._load(RANKING_STATISTICS_COLLECTION))
        logger.info(f"分析レポート作成: ゲーム {len(games)}日分, ランキング統計 {len(rankings)}件")
        return {"games": games, "ranking_statistics": rankings}
