"""
Firebase 接続を管理するモジュール

主な機能:
- Firebase Admin SDK の初期化（サービスアカウント / ADC）
- Firestore クライアントと Realtime Database ルート参照の提供
- 接続確認
"""

import functools
import logging
from typing import Optional

import firebase_admin
from firebase_admin import credentials, db, firestore

from sorter_app.config import Settings, load_settings
from sorter_app.constants import GAME_SESSIONS_PATH, RANKINGS_COLLECTION

logger = logging.getLogger(__name__)


class FirestoreManager:
    """Firestore / Realtime Database 操作を管理するクラス"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or load_settings()
        self.app = None
        self.db = None
        self.rtdb = None
        self._initialize_firebase()

    def _initialize_firebase(self):
        """Firebase初期化"""
        try:
            self.app = firebase_admin.get_app()
        except ValueError:
            options = {
                "projectId": self.settings.project_id,
                "databaseURL": self.settings.database_url,
                "storageBucket": self.settings.storage_bucket,
            }
            self.app = firebase_admin.initialize_app(self._credentials(), options)
            logger.info(f"Firebase を初期化しました (project: {self.settings.project_id})")

        self.db = firestore.client(app=self.app)
        self.rtdb = db.reference("/", app=self.app)

    def _credentials(self):
        """サービスアカウント情報を解決（なければ Application Default Credentials）"""
        if self.settings.credentials:
            return credentials.Certificate(self.settings.credentials)
        if self.settings.credentials_path:
            return credentials.Certificate(self.settings.credentials_path)
        logger.info("サービスアカウント未設定のため Application Default Credentials を使用します")
        return credentials.ApplicationDefault()

    def test_connection(self) -> bool:
        """Firestore / RTDB への接続確認"""
        try:
            docs = list(self.db.collection(RANKINGS_COLLECTION).limit(1).stream())
            sessions = self.rtdb.child(GAME_SESSIONS_PATH).order_by_key().limit_to_first(1).get()
            logger.info(f"✅ Firebase接続成功 (rankings: {len(docs)}件, sessions: {len(sessions or {})}件)")
            return True
        except Exception as e:
            logger.error(f"❌ Firebase接続エラー: {e}")
            return False


# グローバルインスタンス
@functools.lru_cache(maxsize=1)
def get_firestore_manager() -> FirestoreManager:
    """FirestoreManagerのシングルトンインスタンスを取得"""
    return FirestoreManager()

