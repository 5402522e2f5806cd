"""ゲーム操作のエラー定義"""

from enum import Enum


class ErrorCode(Enum):
    ERR_NOT_AUTHENTICATED = "ERR_NOT_AUTHENTICATED"
    ERR_GAME_NOT_FOUND = "ERR_GAME_NOT_FOUND"
    ERR_GAME_NOT_ACTIVE = "ERR_GAME_NOT_ACTIVE"
    ERR_GAME_FINISHED = "ERR_GAME_FINISHED"
    ERR_GAME_STARTED = "ERR_GAME_STARTED"
    ERR_ROOM_FULL = "ERR_ROOM_FULL"
    ERR_ROOM_NOT_READY = "ERR_ROOM_NOT_READY"
    ERR_NOT_HOST = "ERR_NOT_HOST"
    ERR_NOT_IN_GAME = "ERR_NOT_IN_GAME"
    ERR_INVALID_DIRECTION = "ERR_INVALID_DIRECTION"
    ERR_INVALID_PLAYER_COUNT = "ERR_INVALID_PLAYER_COUNT"
    ERR_INVALID_RANKING_TYPE = "ERR_INVALID_RANKING_TYPE"
    ERR_NOT_ENOUGH_CATEGORIES = "ERR_NOT_ENOUGH_CATEGORIES"


class GameError(Exception):
    """ゲームルール違反・不正操作を表す例外"""

    def __init__(self, code: ErrorCode, message: str = ""):
        super().__init__(message or code.value)
        self.code = code
        self.message = message or code.value

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"
