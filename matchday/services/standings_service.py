"""
Standings Aggregator

Folds completed league matches into per-team tallies and orders them.

Rules:
- Only APPROVED, non-bye matches between two distinct teams with both
  scores set are counted
- Win = 3 points, draw = 1, loss = 0
- Order: points desc, goal difference desc, goals for desc
- Equal tuples keep their input order (stable sort); there is no
  head-to-head tie-break
- Standings are derived on demand and never stored
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from matchday.orm.match import Match, MatchState
from matchday.orm.team import Team

logger = logging.getLogger(__name__)

POINTS_FOR_WIN = 3
POINTS_FOR_DRAW = 1
POINTS_FOR_LOSS = 0


@dataclass
class TeamStanding:
    team: Team
    played: int = 0
    won: int = 0
    drawn: int = 0
    lost: int = 0
    goals_for: int = 0
    goals_against: int = 0
    position: Optional[int] = None

    @property
    def goal_difference(self) -> int:
        return self.goals_for - self.goals_against

    @property
    def points(self) -> int:
        return self.won * POINTS_FOR_WIN + self.drawn * POINTS_FOR_DRAW + self.lost * POINTS_FOR_LOSS

    def add_match(self, scored: int, conceded: int):
        self.played += 1
        self.goals_for += scored
        self.goals_against += conceded
        if scored > conceded:
            self.won += 1
        elif scored == conceded:
            self.drawn += 1
        else:
            self.lost += 1

    def sort_key(self):
        return (-self.points, -self.goal_difference, -self.goals_for)

    def to_dict(self):
        return {
            "position": self.position,
            "team_id": self.team.id,
            "team_name": self.team.name,
            "played": self.played,
            "won": self.won,
            "drawn": self.drawn,
            "lost": self.lost,
            "goals_for": self.goals_for,
            "goals_against": self.goals_against,
            "goal_difference": self.goal_difference,
            "points": self.points,
        }


def is_countable(match: Match) -> bool:
    return (
        match.state == MatchState.APPROVED
        and not match.is_bye
        and match.home_team_id != match.away_team_id
        and match.has_scores
    )


def sort_standings(standings: List[TeamStanding]) -> List[TeamStanding]:
    """Stable sort by (points, GD, GF) descending and assign positions."""
    ordered = sorted(standings, key=TeamStanding.sort_key)
    for index, standing in enumerate(ordered, start=1):
        standing.position = index
    return ordered


def calculate_standings(teams: Iterable[Team], matches: Iterable[Match]) -> List[TeamStanding]:
    """
    Build the league table.

    Args:
        teams: Teams in insertion order; this order breaks full ties
        matches: Any set of matches; non-countable ones are ignored
    Returns:
        Sorted standings with position set
    """
    table: Dict[int, TeamStanding] = {}
    for team in teams:
        table[team.id] = TeamStanding(team=team)

    for match in matches:
        if not is_countable(match):
            continue
        home = table.get(match.home_team_id)
        away = table.get(match.away_team_id)
        if home is None or away is None:
            logger.warning(f"Match {match.id} references a team outside the table; skipped")
            continue
        home.add_match(match.home_score, match.away_score)
        away.add_match(match.away_score, match.home_score)

    return sort_standings(list(table.values()))


def all_real_matches_completed(matches: Iterable[Match]) -> bool:
    """True when every real (non-bye) match has an approved score."""
    real = [m for m in matches if m.is_real]
    return bool(real) and all(m.is_completed for m in real)
