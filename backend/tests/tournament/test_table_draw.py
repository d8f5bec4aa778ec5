"""테이블 추첨 테스트."""

import pytest

from pokerleague.tournament.table_draw import draw_tables, table_sizes


class TestTableSizes:
    @pytest.mark.parametrize(
        "total, expected",
        [
            (0, []),
            (7, [7]),
            (10, [10]),
            (11, [6, 5]),
            (25, [9, 8, 8]),
        ],
    )
    def test_balanced(self, total, expected):
        assert table_sizes(total) == expected


class TestDrawTables:
    def test_every_player_seated_once(self):
        players = list(range(1, 26))
        tables = draw_tables(players, seed=3)

        seated = [p for table in tables for p in table.player_ids]
        assert sorted(seated) == players
        assert [t.table_number for t in tables] == [1, 2, 3]

    def test_seed_is_reproducible(self):
        players = list(range(1, 15))
        first = [t.player_ids for t in draw_tables(players, seed=42)]
        second = [t.player_ids for t in draw_tables(players, seed=42)]
        assert first == second

    def test_final_table_is_single_table(self):
        tables = draw_tables(list(range(1, 13)), is_final_table=True, seed=1)

        assert len(tables) == 1
        assert tables[0].size == 12

    def test_duplicates_rejected(self):
        with pytest.raises(ValueError):
            draw_tables([1, 2, 2])

    def test_seat_lookup(self):
        table = draw_tables([5, 6, 7], seed=9)[0]

        seats = sorted(table.seat_of(p) for p in (5, 6, 7))
        assert seats == [1, 2, 3]
        assert table.seat_of(99) is None
        assert len(table.to_dict()["players"]) == 3

    def test_empty(self):
        assert draw_tables([]) == []
