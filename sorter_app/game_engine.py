"""
ゲーム進行ロジック

- 方向（上下左右）とカテゴリの対応付け
- 出題カードの準備
- スワイプ判定とスコア・進捗の計算
"""

import math
import random
import time
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from sorter_app.car_database import generate_game_cards
from sorter_app.constants import CAR_CATEGORIES, DEFAULT_CARD_COUNT, DIRECTIONS
from sorter_app.errors import ErrorCode, GameError
from sorter_app.models import Car, GameResult, GameSession, Player, PlayerState


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_direction_map(categories: Sequence[str] = None, required: Iterable[str] = (),
                           rng: random.Random = None) -> Dict[str, str]:
    """
    ランダムな方向とカテゴリのマッピングを作成

    required に含まれるカテゴリは必ずいずれかの方向に割り当てる。
    """
    rng = rng or random
    categories = list(categories or CAR_CATEGORIES)
    required = list(dict.fromkeys(required))

    unknown = [c for c in required if c not in categories]
    if unknown:
        raise GameError(ErrorCode.ERR_NOT_ENOUGH_CATEGORIES, f"未知のカテゴリ: {unknown}")
    if len(required) > len(DIRECTIONS):
        raise GameError(ErrorCode.ERR_NOT_ENOUGH_CATEGORIES,
                        f"必須カテゴリが方向数を超えています: {len(required)}")
    if len(set(categories)) < len(DIRECTIONS):
        raise GameError(ErrorCode.ERR_NOT_ENOUGH_CATEGORIES,
                        f"カテゴリ数が不足しています: {len(set(categories))}")

    rest = [c for c in dict.fromkeys(categories) if c not in required]
    rng.shuffle(rest)
    chosen = required + rest[:len(DIRECTIONS) - len(required)]
    rng.shuffle(chosen)
    return dict(zip(DIRECTIONS, chosen))


def prepare_game_cards(direction_map: Dict[str, str], count: int = DEFAULT_CARD_COUNT,
                       rng: random.Random = None, now_ms: int = None) -> List[Car]:
    """方向マップに含まれるカテゴリのみからカードを準備（全カードが正解可能）"""
    return generate_game_cards(count, categories=list(direction_map.values()), rng=rng, now_ms=now_ms)


def new_session(players: Sequence[Player], session_id: str = None, card_count: int = DEFAULT_CARD_COUNT,
                rng: random.Random = None, now_ms: int = None, max_players: Optional[int] = None) -> GameSession:
    """新しいゲームセッションを生成"""
    now_ms = _now_ms() if now_ms is None else now_ms
    direction_map = generate_direction_map(rng=rng)
    cars = prepare_game_cards(direction_map, card_count, rng=rng, now_ms=now_ms)
    return GameSession(
        id=session_id or str(uuid.uuid4()),
        players={p.uid: PlayerState(display_name=p.name) for p in players},
        direction_map=direction_map,
        cars=cars,
        start_time=now_ms,
        is_active=True,
        last_active_time=now_ms,
        max_players=max_players,
    )


def calculate_progress(answered: int, total: int) -> int:
    """進捗率（%・切り捨て）"""
    if total <= 0:
        return 100
    return math.floor(answered / total * 100)


@dataclass
class SwipeOutcome:
    """1回のスワイプ結果"""
    correct: bool
    expected_category: str
    actual_category: str
    score: int
    progress: int
    finished: bool
    result: Optional[GameResult] = None


class SwipeGame:
    """1人分のゲーム進行を管理するクラス"""

    def __init__(self, session: GameSession, uid: str):
        self.session = session
        self.uid = uid
        self.current_index = 0
        self.score = 0
        self.is_active = session.is_active
        self.result: Optional[GameResult] = None

    @classmethod
    def start_single_player(cls, player: Player, card_count: int = DEFAULT_CARD_COUNT,
                            rng: random.Random = None, now_ms: int = None) -> "SwipeGame":
        """シングルプレイヤーゲーム開始"""
        session = new_session([player], card_count=card_count, rng=rng, now_ms=now_ms)
        return cls(session, player.uid)

    @property
    def cars(self) -> List[Car]:
        return self.session.cars

    @property
    def current_car(self) -> Optional[Car]:
        if self.current_index >= len(self.cars):
            return None
        return self.cars[self.current_index]

    @property
    def remaining_cards(self) -> int:
        return len(self.cars) - self.current_index

    @property
    def progress(self) -> int:
        return calculate_progress(self.current_index, len(self.cars))

    def swipe(self, direction: str, now_ms: int = None) -> SwipeOutcome:
        """スワイプ処理"""
        if direction not in DIRECTIONS:
            raise GameError(ErrorCode.ERR_INVALID_DIRECTION, f"不正な方向: {direction}")
        if not self.is_active or self.current_car is None:
            raise GameError(ErrorCode.ERR_GAME_NOT_ACTIVE, "ゲームが開始されていません")

        car = self.current_car
        expected = self.session.direction_map.get(direction)
        is_correct = car.category == expected
        if is_correct:
            self.score += 1
        self.current_index += 1

        player = self.session.players.get(self.uid)
        if player is not None:
            player.score = self.score
            player.progress = self.progress

        finished = self.current_index >= len(self.cars)
        if finished:
            self._finish(now_ms)

        return SwipeOutcome(
            correct=is_correct,
            expected_category=expected,
            actual_category=car.category,
            score=self.score,
            progress=self.progress,
            finished=finished,
            result=self.result,
        )

    def _finish(self, now_ms: int = None):
        end_time = _now_ms() if now_ms is None else now_ms
        self.result = GameResult(
            score=self.score,
            correct_answers=self.score,
            total_answers=len(self.cars),
            time_in_seconds=math.floor((end_time - self.session.start_time) / 1000),
        )
        self.is_active = False
        player = self.session.players.get(self.uid)
        if player is not None:
            player.is_complete = True
        if not self.session.is_multiplayer:
            self.session.is_active = False
            self.session.end_time = end_time
