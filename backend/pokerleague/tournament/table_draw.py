"""
Table Draw.

라운드 시작 전 착석 플레이어를 무작위로 테이블에 배정.

- Fisher-Yates 셔플 (random.Random, seed 지정 시 재현 가능)
- 테이블당 최대 10명, 인원은 균등 분배 (나머지는 낮은 번호 테이블부터)
- 파이널 테이블 추첨은 항상 단일 테이블
"""

import math
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pokerleague.logging_config import get_logger

logger = get_logger(__name__)

MAX_PLAYERS_PER_TABLE = 10


@dataclass
class TableAssignment:
    """One drawn table."""

    table_number: int
    player_ids: List[int] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.player_ids)

    def seat_of(self, player_id: int) -> Optional[int]:
        """1-based seat number, or None if not at this table."""
        try:
            return self.player_ids.index(player_id) + 1
        except ValueError:
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_number": self.table_number,
            "players": [
                {"seat": seat, "player_id": player_id}
                for seat, player_id in enumerate(self.player_ids, 1)
            ],
        }


def shuffle_players(player_ids: Sequence[int], rng: random.Random) -> List[int]:
    """Fisher-Yates shuffle returning a new list."""
    shuffled = list(player_ids)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def table_sizes(total: int, max_per_table: int = MAX_PLAYERS_PER_TABLE) -> List[int]:
    """Balanced table sizes; lower-numbered tables take the extra players."""
    if total <= 0:
        return []
    count = math.ceil(total / max_per_table)
    base, extra = divmod(total, count)
    return [base + 1 if index < extra else base for index in range(count)]


def draw_tables(
    player_ids: Sequence[int],
    is_final_table: bool = False,
    seed: Optional[int] = None,
    max_per_table: int = MAX_PLAYERS_PER_TABLE,
) -> List[TableAssignment]:
    """Shuffle players into tables."""
    if len(set(player_ids)) != len(player_ids):
        raise ValueError("player_ids must be unique")
    if max_per_table <= 0:
        raise ValueError("max_per_table must be positive")

    shuffled = shuffle_players(player_ids, random.Random(seed))

    if is_final_table:
        sizes = [len(shuffled)] if shuffled else []
    else:
        sizes = table_sizes(len(shuffled), max_per_table)

    tables = []
    offset = 0
    for number, size in enumerate(sizes, 1):
        tables.append(TableAssignment(table_number=number, player_ids=shuffled[offset:offset + size]))
        offset += size

    logger.info(
        "tables_drawn",
        players=len(shuffled),
        tables=len(tables),
        is_final_table=is_final_table,
    )
    return tables
