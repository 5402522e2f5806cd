"""Cloud Functions エントリポイント（firebase deploy は main.py から関数を読み込む）"""

from sorter_app.cloud_functions import (  # noqa: F401
    archiveAndCleanGameData,
    cleanupOldRooms,
    rankingRetention,
)
