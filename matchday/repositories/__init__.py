from .base import Repository
from .tournament_repository import TournamentRepository
from .team_repository import TeamRepository
from .match_repository import MatchRepository
from .match_result_repository import MatchResultRepository
