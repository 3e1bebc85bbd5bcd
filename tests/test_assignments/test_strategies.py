"""Tests for assignee selection strategies."""

import pytest

from src.assignments.schemas import RuleAssignment, Strategy


def _assignment(strategy, team_ids=()):
    return RuleAssignment(rule_id="R1", strategy=strategy, team_ids=frozenset(team_ids))


class TestManual:
    @pytest.mark.asyncio
    async def test_picks_first_recipient(self, strategies):
        assert await strategies.select_assignee(_assignment(Strategy.MANUAL), (5, 7)) == 5


class TestRoundRobin:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("recipients", [(9,), (2, 4, 6), (1, 3, 5, 7, 11)])
    async def test_two_full_cycles_visit_each_recipient_twice(self, strategies, recipients):
        assignment = _assignment(Strategy.ROUND_ROBIN)
        n = len(recipients)
        chosen = [await strategies.select_assignee(assignment, recipients) for _ in range(2 * n)]
        assert chosen[:n] == list(recipients)
        assert chosen[n:] == list(recipients)

    @pytest.mark.asyncio
    async def test_cursor_wraps_when_recipients_shrink(self, strategies, registry):
        for _ in range(5):
            await registry.next_cursor("R1")
        assignment = _assignment(Strategy.ROUND_ROBIN)
        assert await strategies.select_assignee(assignment, (10, 20)) == 20


class TestLoadBased:
    @pytest.mark.asyncio
    async def test_picks_least_loaded(self, strategies, directory):
        directory.add_user(1, open_case_count=3)
        directory.add_user(2, open_case_count=1)
        directory.add_user(3, open_case_count=1)
        assert await strategies.select_assignee(_assignment(Strategy.LOAD_BASED), (1, 2, 3)) == 2

    @pytest.mark.asyncio
    async def test_unknown_users_count_as_idle(self, strategies, directory):
        directory.add_user(1, open_case_count=2)
        assert await strategies.select_assignee(_assignment(Strategy.LOAD_BASED), (1, 8)) == 8


class TestTeamBased:
    @pytest.mark.asyncio
    async def test_prefers_team_lead(self, strategies, directory):
        directory.add_team(1, [3, 4, 5], lead_id=4)
        assignment = _assignment(Strategy.TEAM_BASED, team_ids=[1])
        assert await strategies.select_assignee(assignment, (3, 4, 5)) == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lead_load", [0, 4, 50])
    async def test_lead_wins_regardless_of_load(self, strategies, directory, lead_load):
        directory.add_team(1, [3, 4, 5], lead_id=5)
        directory.add_user(3, open_case_count=0)
        directory.add_user(4, open_case_count=1)
        directory.add_user(5, open_case_count=lead_load)
        assignment = _assignment(Strategy.TEAM_BASED, team_ids=[1])
        assert await strategies.select_assignee(assignment, (3, 4, 5)) == 5

    @pytest.mark.asyncio
    async def test_lowest_team_id_lead_wins(self, strategies, directory):
        directory.add_team(2, [8, 9], lead_id=9)
        directory.add_team(1, [3, 4], lead_id=3)
        assignment = _assignment(Strategy.TEAM_BASED, team_ids=[1, 2])
        assert await strategies.select_assignee(assignment, (3, 4, 8, 9)) == 3

    @pytest.mark.asyncio
    async def test_falls_back_to_load_without_lead(self, strategies, directory):
        directory.add_team(1, [3, 4])
        directory.add_user(3, open_case_count=5)
        directory.add_user(4, open_case_count=0)
        assignment = _assignment(Strategy.TEAM_BASED, team_ids=[1])
        assert await strategies.select_assignee(assignment, (3, 4)) == 4


class TestNoRecipients:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", list(Strategy))
    async def test_returns_none(self, strategies, strategy):
        assert await strategies.select_assignee(_assignment(strategy), ()) is None

    @pytest.mark.asyncio
    async def test_round_robin_cursor_untouched(self, strategies, assignment_repo):
        await strategies.select_assignee(_assignment(Strategy.ROUND_ROBIN), ())
        assert "R1" not in assignment_repo.cursors
