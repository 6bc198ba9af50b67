"""
Round-robin fixture generation.

Pure tests: teams and tournaments are transient ORM objects, nothing is
written to a database.
"""
from collections import Counter
from itertools import combinations

import pytest

from matchday.orm.match import MatchStage, MatchState
from matchday.orm.team import Team
from matchday.orm.tournament import Tournament, TournamentFormat
from matchday.services.round_robin_service import (
    InsufficientTeamsError, RoundRobinScheduler, SchedulingError
)


def make_teams(count):
    return [Team(id=i + 1, tournament_id=1, participant_id=f"p{i + 1}", name=f"Team {i + 1}") for i in range(count)]


@pytest.fixture
def tournament():
    return Tournament(id=1, name="League", format=TournamentFormat.LEAGUE, created_by="org")


def pairing(match):
    return frozenset((match.home_team_id, match.away_team_id))


class TestSingleRoundRobin:

    def test_even_team_count(self, tournament):
        matches = RoundRobinScheduler.generate_league_matches(tournament, make_teams(4))

        assert len(matches) == 6
        assert {m.round for m in matches} == {1, 2, 3}
        assert all(m.stage == MatchStage.LEAGUE_ROUND for m in matches)
        assert all(m.state == MatchState.CREATED for m in matches)
        assert not any(m.is_bye for m in matches)

    def test_every_pair_meets_exactly_once(self, tournament):
        teams = make_teams(6)
        matches = RoundRobinScheduler.generate_league_matches(tournament, teams)

        pairs = Counter(pairing(m) for m in matches)
        expected = {frozenset((a.id, b.id)) for a, b in combinations(teams, 2)}
        assert set(pairs) == expected
        assert all(count == 1 for count in pairs.values())

    def test_each_team_plays_once_per_round(self, tournament):
        matches = RoundRobinScheduler.generate_league_matches(tournament, make_teams(8))

        for round_number, round_matches in RoundRobinScheduler.group_matches_by_round(matches).items():
            seen = []
            for m in round_matches:
                seen.extend([m.home_team_id, m.away_team_id])
            assert len(seen) == len(set(seen)), f"round {round_number} repeats a team"

    def test_positions_are_one_based_within_round(self, tournament):
        matches = RoundRobinScheduler.generate_league_matches(tournament, make_teams(4))
        for round_matches in RoundRobinScheduler.group_matches_by_round(matches).values():
            assert [m.bracket_position for m in round_matches] == [1, 2]

    def test_two_teams_play_one_match(self, tournament):
        matches = RoundRobinScheduler.generate_league_matches(tournament, make_teams(2))
        assert len(matches) == 1
        assert matches[0].round == 1


class TestOddTeamCount:
    """A phantom slot is added; meeting it is a bye."""

    def test_five_teams_rounds_and_byes(self, tournament):
        matches = RoundRobinScheduler.generate_league_matches(tournament, make_teams(5))

        byes = [m for m in matches if m.is_bye]
        real = [m for m in matches if not m.is_bye]
        assert RoundRobinScheduler.get_max_round_number(matches) == 5
        assert len(real) == 10
        assert len(byes) == 5

    def test_each_team_gets_one_bye(self, tournament):
        matches = RoundRobinScheduler.generate_league_matches(tournament, make_teams(5))
        bye_teams = Counter(m.home_team_id for m in matches if m.is_bye)
        assert sorted(bye_teams) == [1, 2, 3, 4, 5]
        assert set(bye_teams.values()) == {1}

    def test_bye_is_approved_zero_zero_against_itself(self, tournament):
        matches = RoundRobinScheduler.generate_league_matches(tournament, make_teams(3))
        for bye in (m for m in matches if m.is_bye):
            assert bye.home_team_id == bye.away_team_id
            assert bye.state == MatchState.APPROVED
            assert (bye.home_score, bye.away_score) == (0, 0)

    def test_one_bye_per_round(self, tournament):
        matches = RoundRobinScheduler.generate_league_matches(tournament, make_teams(7))
        for round_number in range(1, 8):
            assert RoundRobinScheduler.has_bye_in_round(matches, round_number)
            assert sum(1 for m in RoundRobinScheduler.get_matches_for_round(matches, round_number) if m.is_bye) == 1


class TestDoubleRoundRobin:

    def test_second_cycle_swaps_home_and_away(self, tournament):
        matches = RoundRobinScheduler.generate_league_matches(tournament, make_teams(4), rounds_count=2)

        assert len(matches) == 12
        assert RoundRobinScheduler.get_max_round_number(matches) == 6

        first = {(m.round, m.bracket_position): m for m in matches if m.round <= 3}
        for m in (m for m in matches if m.round > 3):
            mirror = first[(m.round - 3, m.bracket_position)]
            assert (m.home_team_id, m.away_team_id) == (mirror.away_team_id, mirror.home_team_id)

    def test_every_ordered_pair_once(self, tournament):
        matches = RoundRobinScheduler.generate_league_matches(tournament, make_teams(4), rounds_count=2)
        ordered = Counter((m.home_team_id, m.away_team_id) for m in matches)
        assert len(ordered) == 12
        assert set(ordered.values()) == {1}


class TestValidation:

    @pytest.mark.parametrize("count", [0, 1])
    def test_fewer_than_two_teams(self, tournament, count):
        with pytest.raises(InsufficientTeamsError) as exc:
            RoundRobinScheduler.generate_league_matches(tournament, make_teams(count))
        assert exc.value.code == "INSUFFICIENT_TEAMS"

    def test_rounds_must_be_positive(self, tournament):
        with pytest.raises(SchedulingError):
            RoundRobinScheduler.generate_league_matches(tournament, make_teams(4), rounds_count=0)

    def test_calculate_total_rounds(self):
        assert RoundRobinScheduler.calculate_total_rounds(1) == 0
        assert RoundRobinScheduler.calculate_total_rounds(4) == 3
        assert RoundRobinScheduler.calculate_total_rounds(5) == 5
        assert RoundRobinScheduler.calculate_total_rounds(4, rounds_count=2) == 6

    def test_rotate_keeps_first_fixed(self):
        teams = make_teams(6)
        for rotation in range(5):
            rotated = RoundRobinScheduler.rotate_teams(teams, rotation)
            assert rotated[0] is teams[0]
            assert sorted(t.id for t in rotated) == [1, 2, 3, 4, 5, 6]
