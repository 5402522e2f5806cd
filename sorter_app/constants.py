"""
仕分け職人 共通定数定義

車種カテゴリ・スワイプ方向・コレクション名・ランキング保持設定
"""

# 車種カテゴリ（表示順）
CAR_CATEGORIES = [
    "クロスカントリー",
    "SUV",
    "軽自動車",
    "ミニバン",
    "ワンボックス",
    "コンパクト",
    "セダン",
    "ステーションワゴン",
    "クーペ",
]

# カテゴリ → 画像ファイル名の接頭辞
CATEGORY_SLUGS = {
    "クロスカントリー": "crosscountry",
    "SUV": "suv",
    "軽自動車": "kei",
    "ミニバン": "minivan",
    "ワンボックス": "onebox",
    "コンパクト": "compact",
    "セダン": "sedan",
    "ステーションワゴン": "wagon",
    "クーペ": "coupe",
}

# 方向マップの割り当て順
DIRECTIONS = ["up", "right", "down", "left"]

# Realtime Database パス
GAME_SESSIONS_PATH = "game_sessions"
CUSTOM_ROOMS_PATH = "custom_rooms"
MATCHMAKING_PATH = "matchmaking"

# Firestore コレクション
RANKINGS_COLLECTION = "rankings"
RANKING_STATISTICS_COLLECTION = "ranking_statistics"
GAME_ANALYTICS_COLLECTION = "game_analytics"

# ゲーム設定
DEFAULT_CARD_COUNT = 20
MATCHMAKING_MAX_PLAYERS = 4
DEFAULT_MAX_PLAYERS = 4
CUSTOM_ROOM_SIZES = (2, 3, 4)
CAR_IMAGE_BASE_URL = "/images/cars"

# ルーム状態
MATCH_STATUS_WAITING = "waiting"
MATCH_STATUS_STARTING = "starting"
MATCH_STATUS_FINISHED = "finished"
ROOM_STATUS_WAITING = "waiting"
ROOM_STATUS_ACTIVE = "active"
ROOM_STATUS_FINISHED = "finished"

# 古いルームを削除するまでの時間（24時間）
ROOM_TTL_MS = 24 * 60 * 60 * 1000

# ランキング設定
RANKING_CONFIG = {
    "KEEP_TOP": 200,             # 保持する上位ランキング数
    "CONTEXT_RANGE": 10,         # ユーザー前後のコンテキスト範囲
    "CLEANUP_THRESHOLD": 1000,   # クリーンアップを開始するしきい値
    "CLEANUP_PROBABILITY": 0.05, # クリーンアップ実行確率（5%）
    "CLEANUP_BATCH_SIZE": 50,    # 一度に削除する最大数
    "FETCH_LIMIT": 500,          # 取得時の安全マージン
}

RANKING_TYPES = ["daily", "weekly", "monthly", "all_time"]

# 新規ランキングエントリの有効期限
RETENTION_DAYS = 30

# 保持レベル
RETENTION_CANDIDATE = "candidate"
RETENTION_LEVELS = ["current", "previous", "older", "archive"]

# 保持レベルごとの上位保持数
RETENTION_KEEP_TOP = {
    "current": 200,
    "previous": 100,
    "older": 50,
    "archive": 10,
}

# 保持レベルごとの期間数（これより古いものは archive）
RETENTION_WINDOW = {
    "current": 1,
    "previous": 1,
    "older": 2,
}

# Firestore バッチ1回あたりの最大書き込み数（上限500に余裕を持たせる）
FIRESTORE_BATCH_LIMIT = 400

# ランキング期間の基準タイムゾーン
RANKING_TIMEZONE = "Asia/Tokyo"
