"""
古いルームデータの定期クリーンアップ

- cleanup_old_rooms: 24時間以上放置されたセッション・カスタムルーム・マッチメイキングを削除
- archive_and_clean_game_data: 分析用サマリーを game_analytics に保存してから元データを削除

削除は並行して実行し、失敗した削除はログに残して次回の実行に任せる
（削除済みデータの削除は何もしないため、再実行しても安全）。
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List

from sorter_app.analytics import build_analytics_record
from sorter_app.constants import (
    CUSTOM_ROOMS_PATH,
    GAME_ANALYTICS_COLLECTION,
    GAME_SESSIONS_PATH,
    MATCHMAKING_PATH,
    ROOM_STATUS_ACTIVE,
    ROOM_TTL_MS,
)

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    """クリーンアップ結果"""
    sessions: int = 0
    custom_rooms: int = 0
    matchmaking: int = 0
    archived: int = 0
    archive_failed: int = 0
    deleted: int = 0
    failed: int = 0
    dry_run: bool = False

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def is_stale_session(room_data: dict, cutoff: int) -> bool:
    """ゲームが終了しているか、長時間放置されているか"""
    if not room_data.get("isActive"):
        return True
    start_time = room_data.get("startTime")
    return bool(start_time) and start_time < cutoff


class RoomCleanup:
    """Realtime Database の古いルームデータを削除するクラス"""

    def __init__(self, root, db=None, clock: Callable[[], int] = None,
                 ttl_ms: int = ROOM_TTL_MS, max_workers: int = 8):
        # root: Realtime Database ルート参照 / db: Firestore クライアント（アーカイブ用）
        self.root = root
        self.db = db
        self.clock = clock or (lambda: int(time.time() * 1000))
        self.ttl_ms = ttl_ms
        self.max_workers = max_workers

    def _query_older_than(self, path: str, order_key: str, cutoff: int) -> Dict[str, dict]:
        snapshot = self.root.child(path).order_by_child(order_key).end_at(cutoff).get()
        return {key: value for key, value in (snapshot or {}).items() if isinstance(value, dict)}

    def _stale_sessions(self, cutoff: int) -> Dict[str, dict]:
        candidates = self._query_older_than(GAME_SESSIONS_PATH, "lastActiveTime", cutoff)
        return {room_id: data for room_id, data in candidates.items() if is_stale_session(data, cutoff)}

    def _delete(self, path: str) -> bool:
        try:
            self.root.child(path).delete()
            return True
        except Exception as e:
            logger.error(f"削除に失敗しました ({path}): {e}")
            return False

    def _delete_all(self, paths: List[str]) -> Dict[str, int]:
        """すべての削除処理を並行実行"""
        if not paths:
            return {"deleted": 0, "failed": 0}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            results = list(executor.map(self._delete, paths))
        deleted = sum(1 for ok in results if ok)
        return {"deleted": deleted, "failed": len(results) - deleted}

    def cleanup_old_rooms(self, dry_run: bool = False) -> CleanupReport:
        """古いルームデータのクリーンアップ"""
        cutoff = self.clock() - self.ttl_ms
        logger.info("古いルームデータのクリーンアップを開始します...")

        paths = []
        sessions = self._stale_sessions(cutoff)
        for room_id in sessions:
            logger.info(f"古いルームを削除: {room_id}")
            paths.append(f"{GAME_SESSIONS_PATH}/{room_id}")

        custom_rooms = {
            room_id: data
            for room_id, data in self._query_older_than(CUSTOM_ROOMS_PATH, "created", cutoff).items()
            if data.get("status") != ROOM_STATUS_ACTIVE
        }
        for room_id in custom_rooms:
            logger.info(f"古いカスタムルームを削除: {room_id}")
            paths.append(f"{CUSTOM_ROOMS_PATH}/{room_id}")

        matchmaking = self._query_older_than(MATCHMAKING_PATH, "created", cutoff)
        for room_id in matchmaking:
            logger.info(f"古いマッチメイキングデータを削除: {room_id}")
            paths.append(f"{MATCHMAKING_PATH}/{room_id}")

        report = CleanupReport(
            sessions=len(sessions),
            custom_rooms=len(custom_rooms),
            matchmaking=len(matchmaking),
            dry_run=dry_run,
        )
        if dry_run:
            logger.info(f"[DRY RUN] 削除対象 {len(paths)}件")
            return report

        counts = self._delete_all(paths)
        report.deleted = counts["deleted"]
        report.failed = counts["failed"]
        logger.info(f"{report.deleted}件の古いルームデータを削除しました (失敗 {report.failed}件)")
        return report

    def _archive_room(self, room_id: str, room_data: dict, now: int) -> Dict[str, int]:
        # アーカイブに失敗したルームは削除せず次回に回す
        try:
            record = build_analytics_record(room_id, room_data, now)
            self.db.collection(GAME_ANALYTICS_COLLECTION).document(room_id).set(record)
        except Exception as e:
            logger.error(f"ゲームデータのアーカイブに失敗しました ({room_id}): {e}")
            return {"archived": 0, "archive_failed": 1, "deleted": 0, "failed": 0}

        results = [
            self._delete(f"{GAME_SESSIONS_PATH}/{room_id}"),
            self._delete(f"{CUSTOM_ROOMS_PATH}/{room_id}"),
            self._delete(f"{MATCHMAKING_PATH}/{room_id}"),
        ]
        deleted = sum(1 for ok in results if ok)
        return {"archived": 1, "archive_failed": 0, "deleted": deleted, "failed": len(results) - deleted}

    def archive_and_clean_game_data(self, dry_run: bool = False) -> CleanupReport:
        """ゲーム統計データを抽出してから元データを削除"""
        if self.db is None:
            raise ValueError("アーカイブには Firestore クライアントが必要です")

        now = self.clock()
        cutoff = now - self.ttl_ms
        logger.info("ゲームデータのアーカイブと削除を開始します...")

        sessions = self._stale_sessions(cutoff)
        report = CleanupReport(sessions=len(sessions), dry_run=dry_run)
        if dry_run:
            logger.info(f"[DRY RUN] アーカイブ対象 {len(sessions)}件")
            return report

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [
                executor.submit(self._archive_room, room_id, data, now)
                for room_id, data in sessions.items()
            ]
            for future in futures:
                counts = future.result()
                report.archived += counts["archived"]
                report.archive_failed += counts["archive_failed"]
                report.deleted += counts["deleted"]
                report.failed += counts["failed"]

        logger.info(f"{report.archived}件のゲームデータをアーカイブし、元データを削除しました "
                    f"(アーカイブ失敗 {report.archive_failed}件, 削除失敗 {report.failed}件)")
        return report
