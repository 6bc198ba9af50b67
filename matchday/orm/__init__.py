from .base import Base

from .tournament import Tournament, TournamentFormat, TournamentStatus
from .team import Team
from .match import Match, MatchStage, MatchState, STAGE_DISPLAY_NAMES
from .match_result import MatchResult
