"""
Round-Robin Scheduler: circle method

Rules:
- Odd team count: a None sentinel is added; whoever meets it gets a bye
  (home = away, 0-0, APPROVED immediately)
- Team 0 stays fixed, the other N-1 rotate one position per round
- N/2 pairings per round, N-1 rounds per cycle
- Double round robin repeats the cycle with home/away swapped on every
  odd cycle and round numbers offset by N-1
- A team paired with itself is logged and skipped
"""
import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence

from matchday.orm.match import Match, MatchStage, MatchState
from matchday.orm.team import Team
from matchday.orm.tournament import Tournament

logger = logging.getLogger(__name__)


class SchedulingError(Exception):
    """Base exception for fixture generation."""
    def __init__(self, message: str, code: str = "SCHEDULING_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class InsufficientTeamsError(SchedulingError):
    """Raised when fewer than two teams are available."""
    def __init__(self, team_count: int):
        super().__init__(
            f"At least 2 teams are required, got {team_count}",
            "INSUFFICIENT_TEAMS"
        )


class RoundRobinScheduler:

    @staticmethod
    def rotate_teams(teams: Sequence[Optional[Team]], rotation: int) -> List[Optional[Team]]:
        """Keep index 0 fixed and rotate the rest by `rotation` positions."""
        n = len(teams)
        rotated = [teams[0]]
        for i in range(1, n):
            rotated.append(teams[1 + (i + rotation - 1) % (n - 1)])
        return rotated

    @staticmethod
    def generate_league_matches(
        tournament: Tournament,
        teams: Sequence[Team],
        rounds_count: int = 1,
    ) -> List[Match]:
        """
        Build every fixture of a league. Matches are returned unsaved.

        Raises:
            InsufficientTeamsError: If fewer than 2 teams
            SchedulingError: If rounds_count is not positive
        """
        if len(teams) < 2:
            raise InsufficientTeamsError(len(teams))
        if rounds_count < 1:
            raise SchedulingError(f"Number of rounds must be positive, got {rounds_count}", "INVALID_ROUNDS")

        slots: List[Optional[Team]] = list(teams)
        if len(slots) % 2 == 1:
            slots.append(None)

        n = len(slots)
        rounds_per_cycle = n - 1
        matches: List[Match] = []

        for cycle in range(rounds_count):
            swap_home_away = rounds_count > 1 and cycle % 2 == 1

            for round_index in range(rounds_per_cycle):
                absolute_round = cycle * rounds_per_cycle + round_index + 1
                rotated = RoundRobinScheduler.rotate_teams(slots, round_index)

                for pair_index in range(n // 2):
                    first = rotated[pair_index]
                    second = rotated[n - 1 - pair_index]
                    position = pair_index + 1

                    if first is None or second is None:
                        present = first if first is not None else second
                        matches.append(RoundRobinScheduler._bye_match(tournament, present, absolute_round, position))
                        continue

                    if first.id == second.id:
                        logger.error(
                            f"Tournament {tournament.id}: team {first.id} paired with itself "
                            f"in round {absolute_round}; skipped"
                        )
                        continue

                    home, away = (second, first) if swap_home_away else (first, second)
                    matches.append(Match(
                        tournament_id=tournament.id,
                        home_team_id=home.id,
                        away_team_id=away.id,
                        round=absolute_round,
                        stage=MatchStage.LEAGUE_ROUND,
                        bracket_position=position,
                        state=MatchState.CREATED,
                        is_bye=False,
                        is_third_place_match=False,
                        decided_by_penalties=False,
                        version=1,
                    ))

        real = sum(1 for m in matches if not m.is_bye)
        logger.info(
            f"Tournament {tournament.id}: generated {real} league matches and "
            f"{len(matches) - real} byes over {rounds_per_cycle * rounds_count} rounds"
        )
        return matches

    @staticmethod
    def _bye_match(tournament: Tournament, team: Team, round_number: int, position: int) -> Match:
        return Match(
            tournament_id=tournament.id,
            home_team_id=team.id,
            away_team_id=team.id,
            round=round_number,
            stage=MatchStage.LEAGUE_ROUND,
            bracket_position=position,
            state=MatchState.APPROVED,
            home_score=0,
            away_score=0,
            is_bye=True,
            is_third_place_match=False,
            decided_by_penalties=False,
            version=1,
        )

    # =========================================================================
    # Schedule queries
    # =========================================================================

    @staticmethod
    def calculate_total_rounds(team_count: int, rounds_count: int = 1) -> int:
        if team_count < 2:
            return 0
        slots = team_count + (team_count % 2)
        return (slots - 1) * rounds_count

    @staticmethod
    def group_matches_by_round(matches: Sequence[Match]) -> Dict[int, List[Match]]:
        grouped: Dict[int, List[Match]] = OrderedDict()
        for match in sorted(matches, key=lambda m: (m.round, m.bracket_position or 0)):
            grouped.setdefault(match.round, []).append(match)
        return grouped

    @staticmethod
    def get_matches_for_round(matches: Sequence[Match], round_number: int) -> List[Match]:
        return [m for m in matches if m.round == round_number]

    @staticmethod
    def has_bye_in_round(matches: Sequence[Match], round_number: int) -> bool:
        return any(m.is_bye for m in matches if m.round == round_number)

    @staticmethod
    def get_max_round_number(matches: Sequence[Match]) -> int:
        return max((m.round for m in matches), default=0)
