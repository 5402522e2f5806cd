"""
Firebase Cloud Functions（スケジュール実行）

- cleanupOldRooms       : 24時間ごとに古いルームデータを削除
- archiveAndCleanGameData: 24時間ごとにゲーム統計をアーカイブしてから削除
- rankingRetention       : 毎日ランキングの保持レベルを更新して間引き
"""

import logging

from firebase_functions import options, scheduler_fn

from sorter_app.constants import RANKING_TIMEZONE
from sorter_app.firestore_db import get_firestore_manager
from sorter_app.ranking_retention import RankingRetention
from sorter_app.room_cleanup import RoomCleanup

logger = logging.getLogger(__name__)

options.set_global_options(region="asia-northeast1", timeout_sec=540)


def run_cleanup_old_rooms(manager=None) -> dict:
    manager = manager or get_firestore_manager()
    return RoomCleanup(manager.rtdb, manager.db).cleanup_old_rooms().to_dict()


def run_archive_and_clean(manager=None) -> dict:
    manager = manager or get_firestore_manager()
    return RoomCleanup(manager.rtdb, manager.db).archive_and_clean_game_data().to_dict()


def run_ranking_retention(manager=None) -> dict:
    manager = manager or get_firestore_manager()
    return RankingRetention(manager.db).run_all()


@scheduler_fn.on_schedule(schedule="every 24 hours")
def cleanupOldRooms(event: scheduler_fn.ScheduledEvent) -> None:
    result = run_cleanup_old_rooms()
    logger.info(f"cleanupOldRooms 完了: {result}")


@scheduler_fn.on_schedule(schedule="every 24 hours")
def archiveAndCleanGameData(event: scheduler_fn.ScheduledEvent) -> None:
    result = run_archive_and_clean()
    logger.info(f"archiveAndCleanGameData 完了: {result}")


@scheduler_fn.on_schedule(schedule="0 4 * * *", timezone=scheduler_fn.Timezone(RANKING_TIMEZONE))
def rankingRetention(event: scheduler_fn.ScheduledEvent) -> None:
    result = run_ranking_retention()
    logger.info(f"rankingRetention 完了: {result}")
