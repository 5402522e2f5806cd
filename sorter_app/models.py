"""
データモデル定義

Firebase に保存する際のフィールド名は camelCase（クライアントと共通）。
"""

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def guest_display_name(uid: str, display_name: Optional[str] = None) -> str:
    """表示名がなければ Guest-xxxxx 形式の名前を返す"""
    if display_name and display_name.strip():
        return display_name
    return f"Guest-{uid[:5]}"


@dataclass
class Player:
    """ゲームに参加するユーザー（認証済みユーザーの最小情報）"""
    uid: str
    display_name: Optional[str] = None

    @property
    def name(self) -> str:
        return guest_display_name(self.uid, self.display_name)


@dataclass(frozen=True)
class CarImage:
    """車種画像カタログの1件"""
    id: str
    file_name: str
    category: str
    display_name: Optional[str] = None


@dataclass
class Car:
    """ゲームで使用するカード"""
    id: str
    image_url: str
    category: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "imageUrl": self.image_url, "category": self.category}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Car":
        return cls(id=data["id"], image_url=data.get("imageUrl", ""), category=data["category"])


@dataclass
class PlayerState:
    """セッション内のプレイヤー進捗"""
    display_name: str
    score: int = 0
    progress: int = 0
    is_complete: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "displayName": self.display_name,
            "score": self.score,
            "progress": self.progress,
            "isComplete": self.is_complete,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlayerState":
        return cls(
            display_name=data.get("displayName", ""),
            score=int(data.get("score", 0) or 0),
            progress=int(data.get("progress", 0) or 0),
            is_complete=bool(data.get("isComplete", False)),
        )


@dataclass
class GameSession:
    """ゲームセッション（Realtime Database の game_sessions/{id}）"""
    id: str
    players: Dict[str, PlayerState]
    direction_map: Dict[str, str]
    cars: List[Car]
    start_time: int
    is_active: bool = True
    end_time: Optional[int] = None
    last_active_time: Optional[int] = None
    max_players: Optional[int] = None

    @property
    def is_multiplayer(self) -> bool:
        return len(self.players) > 1

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "players": {uid: p.to_dict() for uid, p in self.players.items()},
            "directionMap": dict(self.direction_map),
            "cars": [c.to_dict() for c in self.cars],
            "startTime": self.start_time,
            "isActive": self.is_active,
            "lastActiveTime": self.last_active_time if self.last_active_time is not None else self.start_time,
        }
        if self.end_time is not None:
            data["endTime"] = self.end_time
        if self.max_players is not None:
            data["maxPlayers"] = self.max_players
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], session_id: Optional[str] = None) -> "GameSession":
        return cls(
            id=data.get("id") or session_id or "",
            players={uid: PlayerState.from_dict(p) for uid, p in (data.get("players") or {}).items()},
            direction_map=dict(data.get("directionMap") or {}),
            cars=[Car.from_dict(c) for c in (data.get("cars") or [])],
            start_time=int(data.get("startTime", 0) or 0),
            is_active=bool(data.get("isActive", False)),
            end_time=data.get("endTime"),
            last_active_time=data.get("lastActiveTime"),
            max_players=data.get("maxPlayers"),
        )


@dataclass
class GameResult:
    """ゲーム結果"""
    score: int
    correct_answers: int
    total_answers: int
    time_in_seconds: int

    @property
    def accuracy(self) -> int:
        """正解率（%・四捨五入）"""
        if self.total_answers <= 0:
            return 0
        return round(self.correct_answers / self.total_answers * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "correctAnswers": self.correct_answers,
            "totalAnswers": self.total_answers,
            "timeInSeconds": self.time_in_seconds,
        }


@dataclass
class RankingEntry:
    """ランキングエントリ（Firestore の rankings/{id}）"""
    id: str
    user_id: str
    display_name: str
    score: int
    time_elapsed: int
    type: str
    timestamp: Optional[datetime.datetime] = None
    correct_answers: int = 0
    total_cards: int = 0
    retention: Dict[str, Any] = field(default_factory=dict)
    rank: Optional[int] = None

    @property
    def retention_level(self) -> Optional[str]:
        return self.retention.get("level")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "displayName": self.display_name,
            "score": self.score,
            "correctAnswers": self.correct_answers,
            "totalCards": self.total_cards,
            "timeElapsed": self.time_elapsed,
            "type": self.type,
            "timestamp": self.timestamp,
            "retention": dict(self.retention),
        }

    @classmethod
    def from_dict(cls, doc_id: str, data: Dict[str, Any]) -> "RankingEntry":
        return cls(
            id=doc_id,
            user_id=data.get("userId", ""),
            display_name=data.get("displayName", ""),
            score=int(data.get("score", 0) or 0),
            # 旧形式のエントリは time フィールドに秒数を持つ
            time_elapsed=int(data.get("timeElapsed", data.get("time", 0)) or 0),
            type=data.get("type", "all_time"),
            timestamp=data.get("timestamp") or data.get("date"),
            correct_answers=int(data.get("correctAnswers", 0) or 0),
            total_cards=int(data.get("totalCards", 0) or 0),
            retention=dict(data.get("retention") or {}),
        )
