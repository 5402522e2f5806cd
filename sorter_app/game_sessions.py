"""
マルチプレイヤーセッション管理（Realtime Database）

データ構造:
- game_sessions/{id}  ゲームセッション本体（プレイヤー進捗・方向マップ・カード）
- matchmaking/{id}    ランダムマッチの待機情報
- custom_rooms/{id}   ルームID指定で参加するカスタムルーム
"""

import logging
import random
import time
from typing import Callable, Iterable, Optional

from sorter_app.constants import (
    CUSTOM_ROOM_SIZES,
    CUSTOM_ROOMS_PATH,
    DEFAULT_CARD_COUNT,
    GAME_SESSIONS_PATH,
    MATCH_STATUS_FINISHED,
    MATCH_STATUS_STARTING,
    MATCH_STATUS_WAITING,
    MATCHMAKING_MAX_PLAYERS,
    MATCHMAKING_PATH,
    ROOM_STATUS_ACTIVE,
    ROOM_STATUS_FINISHED,
    ROOM_STATUS_WAITING,
)
from sorter_app.errors import ErrorCode, GameError
from sorter_app.game_engine import new_session
from sorter_app.models import GameSession, Player, PlayerState

logger = logging.getLogger(__name__)

# 参加時にこれらのエラーが出た待機中ゲームは候補から外す
RETIRE_ON_JOIN = (ErrorCode.ERR_GAME_FINISHED, ErrorCode.ERR_ROOM_FULL, ErrorCode.ERR_GAME_NOT_FOUND)


class GameSessionService:
    """ゲームセッション・マッチメイキング・カスタムルームの操作"""

    def __init__(self, root, rng: random.Random = None, clock: Callable[[], int] = None,
                 card_count: int = DEFAULT_CARD_COUNT):
        # root は Realtime Database のルート参照（firebase_admin.db.reference('/')）
        self.root = root
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: int(time.time() * 1000))
        self.card_count = card_count

    def _session_ref(self, game_id: str):
        return self.root.child(f"{GAME_SESSIONS_PATH}/{game_id}")

    def get_session(self, game_id: str) -> Optional[GameSession]:
        data = self._session_ref(game_id).get()
        if not data:
            return None
        return GameSession.from_dict(data, game_id)

    # ------------------------------------------------------------------
    # ランダムマッチ
    # ------------------------------------------------------------------

    def create_multiplayer_game(self, player: Player) -> str:
        """マルチプレイヤーゲーム作成"""
        if player is None:
            raise GameError(ErrorCode.ERR_NOT_AUTHENTICATED, "ユーザーがログインしていません")

        now = self.clock()
        new_ref = self.root.child(GAME_SESSIONS_PATH).push()
        game_id = new_ref.key

        session = new_session([player], session_id=game_id, card_count=self.card_count,
                              rng=self.rng, now_ms=now, max_players=MATCHMAKING_MAX_PLAYERS)
        new_ref.set(session.to_dict())

        # マッチメイキングキューに追加
        self.root.child(f"{MATCHMAKING_PATH}/{game_id}").set({
            "creatorId": player.uid,
            "playerCount": 1,
            "created": now,
            "status": MATCH_STATUS_WAITING,
        })
        logger.info(f"マルチプレイヤーゲームを作成: {game_id} (creator: {player.uid})")
        return game_id

    def find_waiting_game(self, uid: str, exclude: Iterable[str] = ()) -> Optional[str]:
        """参加可能な待機中ゲームのうち最も古いものを探す"""
        excluded = set(exclude)
        matchmaking = self.root.child(MATCHMAKING_PATH).get() or {}
        waiting = [
            (game_id, game) for game_id, game in matchmaking.items()
            if isinstance(game, dict)
            and game_id not in excluded
            and game.get("status") == MATCH_STATUS_WAITING
            and game.get("playerCount", 0) < MATCHMAKING_MAX_PLAYERS
            and game.get("creatorId") != uid
        ]
        if not waiting:
            return None
        waiting.sort(key=lambda item: item[1].get("created", 0))
        return waiting[0][0]

    def join_multiplayer_game(self, player: Player) -> str:
        """
        マルチプレイヤーゲーム参加

        参加できないゲーム（終了・満員・削除済み）は待機リストから外して次の候補を探す。
        待機中のゲームがなければ新しいゲームを作成する。参加したゲームIDを返す。
        """
        if player is None:
            raise GameError(ErrorCode.ERR_NOT_AUTHENTICATED, "ユーザーがログインしていません")

        tried = []
        while True:
            game_id = self.find_waiting_game(player.uid, exclude=tried)
            if game_id is None:
                return self.create_multiplayer_game(player)
            try:
                player_count = self._add_player(game_id, player, MATCHMAKING_MAX_PLAYERS)
                break
            except GameError as e:
                if e.code not in RETIRE_ON_JOIN:
                    raise
                logger.warning(f"待機中ゲームに参加できないため候補から外します: {e}")
                self._retire_match(game_id, e.code)
                tried.append(game_id)

        # マッチメイキング情報を更新
        match_update = {"playerCount": player_count}
        if player_count >= MATCHMAKING_MAX_PLAYERS:
            # プレイヤーが揃ったらゲーム開始
            match_update["status"] = MATCH_STATUS_STARTING
        self.root.child(f"{MATCHMAKING_PATH}/{game_id}").update(match_update)

        logger.info(f"ゲームに参加: {game_id} (uid: {player.uid}, {player_count}人)")
        return game_id

    def _retire_match(self, game_id: str, code: ErrorCode):
        match_ref = self.root.child(f"{MATCHMAKING_PATH}/{game_id}")
        if code == ErrorCode.ERR_ROOM_FULL:
            match_ref.update({"status": MATCH_STATUS_STARTING})
        elif code == ErrorCode.ERR_GAME_NOT_FOUND:
            match_ref.delete()
        else:
            match_ref.update({"status": MATCH_STATUS_FINISHED})

    def _add_player(self, game_id: str, player: Player, max_players: int) -> int:
        """セッションにプレイヤーを追加し、参加人数を返す"""
        now = self.clock()

        def txn(current):
            if not current:
                raise GameError(ErrorCode.ERR_GAME_NOT_FOUND, f"ゲームが見つかりません: {game_id}")
            players = current.get("players") or {}
            if player.uid in players:
                return current
            if not current.get("isActive", True):
                raise GameError(ErrorCode.ERR_GAME_FINISHED, f"ゲームは終了しています: {game_id}")
            if len(players) >= max_players:
                raise GameError(ErrorCode.ERR_ROOM_FULL, f"ルームが満員です: {game_id}")
            players[player.uid] = PlayerState(display_name=player.name).to_dict()
            current["players"] = players
            current["lastActiveTime"] = now
            return current

        updated = self._session_ref(game_id).transaction(txn)
        return len((updated or {}).get("players") or {})

    # ------------------------------------------------------------------
    # カスタムルーム
    # ------------------------------------------------------------------

    def create_custom_room(self, player: Player, max_players: int) -> str:
        """カスタムルーム作成（2〜4人）"""
        if player is None:
            raise GameError(ErrorCode.ERR_NOT_AUTHENTICATED, "ユーザーがログインしていません")
        if max_players not in CUSTOM_ROOM_SIZES:
            raise GameError(ErrorCode.ERR_INVALID_PLAYER_COUNT, f"プレイヤー数は2〜4人です: {max_players}")

        now = self.clock()
        new_ref = self.root.child(GAME_SESSIONS_PATH).push()
        room_id = new_ref.key

        session = new_session([player], session_id=room_id, card_count=self.card_count,
                              rng=self.rng, now_ms=now, max_players=max_players)
        new_ref.set(session.to_dict())
        self.root.child(f"{CUSTOM_ROOMS_PATH}/{room_id}").set({
            "hostId": player.uid,
            "maxPlayers": max_players,
            "created": now,
            "status": ROOM_STATUS_WAITING,
        })
        logger.info(f"カスタムルームを作成: {room_id} ({max_players}人)")
        return room_id

    def join_room_by_id(self, player: Player, room_id: str) -> GameSession:
        """ルームIDを指定してカスタムルームに参加"""
        if player is None:
            raise GameError(ErrorCode.ERR_NOT_AUTHENTICATED, "ユーザーがログインしていません")

        room_id = (room_id or "").strip()
        room = self.root.child(f"{CUSTOM_ROOMS_PATH}/{room_id}").get() if room_id else None
        if not room:
            raise GameError(ErrorCode.ERR_GAME_NOT_FOUND, f"ルームが見つかりません: {room_id}")

        status = room.get("status")
        if status == ROOM_STATUS_FINISHED:
            raise GameError(ErrorCode.ERR_GAME_FINISHED, f"ルームは終了しています: {room_id}")

        session = self.get_session(room_id)
        if session is None:
            raise GameError(ErrorCode.ERR_GAME_NOT_FOUND, f"ゲームが見つかりません: {room_id}")
        if status == ROOM_STATUS_ACTIVE and player.uid not in session.players:
            raise GameError(ErrorCode.ERR_GAME_STARTED, f"ゲームは既に開始されています: {room_id}")

        self._add_player(room_id, player, int(room.get("maxPlayers") or MATCHMAKING_MAX_PLAYERS))
        return self.get_session(room_id)

    def start_custom_room(self, player: Player, room_id: str) -> GameSession:
        """全員揃ったカスタムルームのゲームを開始（ホストのみ）"""
        room = self.root.child(f"{CUSTOM_ROOMS_PATH}/{room_id}").get()
        if not room:
            raise GameError(ErrorCode.ERR_GAME_NOT_FOUND, f"ルームが見つかりません: {room_id}")
        if room.get("hostId") != player.uid:
            raise GameError(ErrorCode.ERR_NOT_HOST, "ホストのみゲームを開始できます")

        session = self.get_session(room_id)
        if session is None:
            raise GameError(ErrorCode.ERR_GAME_NOT_FOUND, f"ゲームが見つかりません: {room_id}")
        max_players = int(room.get("maxPlayers") or MATCHMAKING_MAX_PLAYERS)
        if len(session.players) < max_players:
            raise GameError(ErrorCode.ERR_ROOM_NOT_READY,
                            f"全プレイヤー({max_players}人)が揃うまでお待ちください")

        now = self.clock()
        self._session_ref(room_id).update({"startTime": now, "lastActiveTime": now, "isActive": True})
        self.root.child(f"{CUSTOM_ROOMS_PATH}/{room_id}").update({"status": ROOM_STATUS_ACTIVE})
        logger.info(f"カスタムルームのゲームを開始: {room_id}")
        return self.get_session(room_id)

    # ------------------------------------------------------------------
    # 進捗・退出
    # ------------------------------------------------------------------

    def _require_player(self, game_id: str, uid: str) -> GameSession:
        session = self.get_session(game_id)
        if session is None:
            raise GameError(ErrorCode.ERR_GAME_NOT_FOUND, f"ゲームが見つかりません: {game_id}")
        if uid not in session.players:
            raise GameError(ErrorCode.ERR_NOT_IN_GAME, f"プレイヤーが参加していません: {uid}")
        return session

    def record_progress(self, game_id: str, uid: str, score: int, progress: int):
        """プレイヤーのスコアと進捗を更新"""
        self._require_player(game_id, uid)
        self._session_ref(game_id).update({
            f"players/{uid}/score": score,
            f"players/{uid}/progress": progress,
            "lastActiveTime": self.clock(),
        })

    def complete_player(self, game_id: str, uid: str) -> bool:
        """プレイヤーを完了扱いにし、全員完了ならゲームを終了する。終了したかを返す"""
        session = self._require_player(game_id, uid)

        now = self.clock()
        self._session_ref(game_id).update({f"players/{uid}/isComplete": True, "lastActiveTime": now})
        session.players[uid].is_complete = True

        if all(p.is_complete for p in session.players.values()):
            self._finish_game(game_id, now)
            return True
        return False

    def leave_game(self, game_id: str, uid: str) -> bool:
        """ゲーム退出"""
        logger.info(f"ゲームから退出: {game_id} (uid: {uid})")
        return self.complete_player(game_id, uid)

    def _finish_game(self, game_id: str, now: int):
        self._session_ref(game_id).update({"isActive": False, "endTime": now, "lastActiveTime": now})
        room_ref = self.root.child(f"{CUSTOM_ROOMS_PATH}/{game_id}")
        if room_ref.get():
            room_ref.update({"status": ROOM_STATUS_FINISHED})
        match_ref = self.root.child(f"{MATCHMAKING_PATH}/{game_id}")
        if match_ref.get():
            match_ref.update({"status": MATCH_STATUS_FINISHED})
        logger.info(f"ゲーム終了: {game_id}")
