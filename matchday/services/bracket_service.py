"""
Bracket Engine: single elimination

Rules:
- Bracket size is the next power of two >= team count (minimum 2)
- The first (size - teams) round-1 slots are byes, decided 0-0 at once
- Only round 1 is stored up front; later matches are created when both
  feeding matches are decided
- A slot is the 0-based index of a match within its round:
      round 1:  position = slot + 1
      round r:  position = 1000 * r + slot
  The partner of slot s is s ^ 1; both feed slot s // 2 of round r + 1,
  even slot into the home side
- A next-round match is never created with fewer than two decided
  feeders, and never twice for the same slot
- Knockout draws are not decided until penalties are recorded
- Callers hold the tournament lock (services.tournament_locks) and commit
"""
import logging
import math
import random
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.config.feature_flags import FeatureFlags
from matchday.orm.match import Match, MatchStage, MatchState
from matchday.orm.team import Team
from matchday.orm.tournament import Tournament, TournamentFormat, TournamentStatus
from matchday.repositories import MatchRepository, TeamRepository, TournamentRepository
from matchday.services.notification_service import NotificationService
from matchday.services.round_robin_service import InsufficientTeamsError, SchedulingError
from matchday.services.standings_service import TeamStanding
from matchday.state_machines.match_lifecycle import MatchLifecycle
from matchday.state_machines.tournament_lifecycle import TournamentLifecycle

logger = logging.getLogger(__name__)


# Index = log2(bracket size) - 1
STAGE_ORDER: List[MatchStage] = [
    MatchStage.FINAL,
    MatchStage.SEMI_FINAL,
    MatchStage.QUARTER_FINAL,
    MatchStage.ROUND_OF_16,
    MatchStage.ROUND_OF_32,
    MatchStage.ROUND_OF_64,
]

NEXT_STAGE: Dict[MatchStage, MatchStage] = {
    MatchStage.ROUND_OF_64: MatchStage.ROUND_OF_32,
    MatchStage.ROUND_OF_32: MatchStage.ROUND_OF_16,
    MatchStage.ROUND_OF_16: MatchStage.QUARTER_FINAL,
    MatchStage.QUARTER_FINAL: MatchStage.SEMI_FINAL,
    MatchStage.SEMI_FINAL: MatchStage.FINAL,
    MatchStage.FINAL: MatchStage.FINAL,
}

ROUND_POSITION_BASE = 1000
THIRD_PLACE_POSITION = 9999
WALKOVER_SCORE = 3


class BracketError(SchedulingError):
    """Base exception for bracket operations."""
    def __init__(self, message: str, code: str = "BRACKET_ERROR"):
        super().__init__(message, code)


class MatchAlreadyDecidedError(BracketError):
    def __init__(self, match_id: int):
        super().__init__(f"Match {match_id} is already decided", "MATCH_ALREADY_DECIDED")


class TeamNotInMatchError(BracketError):
    def __init__(self, team_id: int, match_id: int):
        super().__init__(f"Team {team_id} does not play in match {match_id}", "TEAM_NOT_IN_MATCH")


# =============================================================================
# Bracket arithmetic
# =============================================================================

def calculate_bracket_size(team_count: int) -> int:
    """Smallest power of two >= team_count, never below 2."""
    if team_count <= 1:
        return 2
    size = 1
    while size < team_count:
        size *= 2
    return size


def detect_starting_stage(bracket_size: int) -> MatchStage:
    """2 -> FINAL ... 64 -> ROUND_OF_64; larger sizes also map to ROUND_OF_64."""
    index = int(math.log2(bracket_size)) - 1
    index = max(0, min(index, len(STAGE_ORDER) - 1))
    return STAGE_ORDER[index]


def get_next_stage(stage: MatchStage) -> MatchStage:
    return NEXT_STAGE.get(stage, MatchStage.FINAL)


def get_stage_display_name(stage: MatchStage) -> str:
    return stage.display_name


def slot_of(match: Match) -> int:
    if match.round == 1:
        return match.bracket_position - 1
    return match.bracket_position - ROUND_POSITION_BASE * match.round


def position_for(round_number: int, slot: int) -> int:
    if round_number == 1:
        return slot + 1
    return ROUND_POSITION_BASE * round_number + slot


def determine_winner(match: Match) -> Optional[int]:
    """
    Team id of the winner, or None when undetermined.

    A bye is won by its only team. A level score is only decided when
    the match went to penalties and the shootout has a winner.
    """
    if match.is_bye:
        return match.home_team_id
    if not match.has_scores:
        return None
    if match.home_score > match.away_score:
        return match.home_team_id
    if match.away_score > match.home_score:
        return match.away_team_id
    if match.decided_by_penalties and match.home_penalty_score is not None \
            and match.away_penalty_score is not None:
        if match.home_penalty_score > match.away_penalty_score:
            return match.home_team_id
        if match.away_penalty_score > match.home_penalty_score:
            return match.away_team_id
    return None


def determine_loser(match: Match) -> Optional[int]:
    """Team id of the loser; a bye has none."""
    if match.is_bye:
        return None
    winner = determine_winner(match)
    if winner is None:
        return None
    return match.away_team_id if winner == match.home_team_id else match.home_team_id


def needs_penalty_shootout(match: Match) -> bool:
    return (
        match.stage != MatchStage.LEAGUE_ROUND
        and not match.is_bye
        and match.has_scores
        and match.home_score == match.away_score
        and not match.decided_by_penalties
    )


def is_decided(match: Match) -> bool:
    return match.state == MatchState.APPROVED and determine_winner(match) is not None


class BracketService:

    def __init__(self, db: AsyncSession, notifications: NotificationService = None, rng: random.Random = None):
        self.db = db
        self.notifications = notifications or NotificationService()
        self.rng = rng or random.Random()
        self.matches = MatchRepository(db)
        self.teams = TeamRepository(db)
        self.tournaments = TournamentRepository(db)

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate_bracket(self, tournament: Tournament, teams: Sequence[Team]) -> List[Match]:
        """
        Create and persist round 1, then resolve bye pairs.

        Raises:
            InsufficientTeamsError: If fewer than 2 teams
        """
        if len(teams) < 2:
            raise InsufficientTeamsError(len(teams))

        seeded = list(teams)
        self.rng.shuffle(seeded)

        bracket_size = calculate_bracket_size(len(seeded))
        bye_count = bracket_size - len(seeded)
        first_round_count = bracket_size // 2
        stage = detect_starting_stage(bracket_size)

        logger.info(
            f"Tournament {tournament.id}: bracket size {bracket_size}, {bye_count} byes, "
            f"{first_round_count} first-round matches, starting at {stage.value}"
        )

        matches: List[Match] = []
        cursor = 0
        for slot in range(first_round_count):
            if slot < bye_count:
                team = seeded[cursor]
                cursor += 1
                matches.append(Match(
                    tournament_id=tournament.id,
                    home_team_id=team.id,
                    away_team_id=team.id,
                    round=1,
                    stage=stage,
                    bracket_position=position_for(1, slot),
                    state=MatchState.APPROVED,
                    home_score=0,
                    away_score=0,
                    is_bye=True,
                    is_third_place_match=False,
                    decided_by_penalties=False,
                    version=1,
                ))
            else:
                home, away = seeded[cursor], seeded[cursor + 1]
                cursor += 2
                matches.append(Match(
                    tournament_id=tournament.id,
                    home_team_id=home.id,
                    away_team_id=away.id,
                    round=1,
                    stage=stage,
                    bracket_position=position_for(1, slot),
                    state=MatchState.CREATED,
                    is_bye=False,
                    is_third_place_match=False,
                    decided_by_penalties=False,
                    version=1,
                ))

        await self.matches.save_all(matches)
        advanced = await self._resolve_initial_byes(tournament, matches)
        return matches + advanced

    async def _resolve_initial_byes(self, tournament: Tournament, first_round: List[Match]) -> List[Match]:
        """Seed double-bye pairs into round 2 and mark single byes' target side."""
        created: List[Match] = []
        for i in range(0, len(first_round) - 1, 2):
            even, odd = first_round[i], first_round[i + 1]
            if even.is_bye and odd.is_bye:
                created.append(await self._create_next_match(tournament, even, odd))
            elif even.is_bye:
                even.winner_to_home = True
            elif odd.is_bye:
                odd.winner_to_home = False
        await self.db.flush()
        return created

    async def _create_next_match(self, tournament: Tournament, even: Match, odd: Match) -> Match:
        next_round = even.round + 1
        next_match = Match(
            tournament_id=tournament.id,
            home_team_id=determine_winner(even),
            away_team_id=determine_winner(odd),
            round=next_round,
            stage=get_next_stage(even.stage),
            bracket_position=position_for(next_round, slot_of(even) // 2),
            state=MatchState.CREATED,
            is_bye=False,
            is_third_place_match=False,
            decided_by_penalties=False,
            version=1,
        )
        await self.matches.save(next_match)

        even.next_match_id = next_match.id
        even.winner_to_home = True
        odd.next_match_id = next_match.id
        odd.winner_to_home = False
        await self.db.flush()

        logger.info(
            f"Tournament {tournament.id}: created {next_match.stage.value} match {next_match.id} "
            f"(round {next_round}, position {next_match.bracket_position}) "
            f"from matches {even.id} and {odd.id}"
        )
        return next_match

    # =========================================================================
    # Propagation
    # =========================================================================

    async def find_at_position(self, tournament_id: int, round_number: int, position: int,
                               lock: bool = False) -> Optional[Match]:
        query = (
            select(Match)
            .where(
                Match.tournament_id == tournament_id,
                Match.round == round_number,
                Match.bracket_position == position,
                Match.is_third_place_match == False,  # noqa: E712
            )
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalars().first()

    async def propagate_winner(self, match: Match) -> Optional[Match]:
        """
        Move the winner of a decided match into the next round.

        Returns:
            The next-round match the winner now sits in, or None when the
            winner is undetermined, the match ends the bracket, or the
            partner match is not decided yet
        """
        winner = determine_winner(match)
        if winner is None:
            logger.warning(f"Match {match.id}: winner undetermined, nothing to propagate")
            return None
        if match.stage == MatchStage.FINAL or match.is_third_place_match:
            return None

        slot = slot_of(match)
        match.winner_to_home = slot % 2 == 0
        await self.db.flush()

        if match.next_match_id is not None:
            next_match = await self.matches.find_by_id(match.next_match_id)
            if next_match is None:
                logger.error(f"Match {match.id}: next match {match.next_match_id} missing; link cleared")
                match.next_match_id = None
            else:
                self._seat_winner(next_match, winner, match.winner_to_home)
                await self.db.flush()
                return next_match

        partner_position = position_for(match.round, slot ^ 1)
        partner = await self.find_at_position(match.tournament_id, match.round, partner_position, lock=True)
        if partner is None:
            logger.warning(
                f"Match {match.id}: partner at round {match.round} position {partner_position} "
                f"not found; waiting"
            )
            await self.db.flush()
            return None

        if not is_decided(partner):
            logger.info(f"Match {match.id}: partner {partner.id} not decided yet; winner {winner} waits")
            await self.db.flush()
            return None

        even, odd = (match, partner) if slot % 2 == 0 else (partner, match)
        partner_winner = determine_winner(partner)

        next_match = None
        if partner.next_match_id is not None:
            next_match = await self.matches.find_by_id(partner.next_match_id)
        if next_match is None:
            next_match = await self.find_at_position(
                match.tournament_id, match.round + 1, position_for(match.round + 1, slot // 2), lock=True
            )

        if next_match is None:
            tournament = await self.tournaments.find_by_id(match.tournament_id)
            next_match = await self._create_next_match(tournament, even, odd)
        else:
            even.next_match_id = next_match.id
            even.winner_to_home = True
            odd.next_match_id = next_match.id
            odd.winner_to_home = False
            self._seat_winner(next_match, winner, match.winner_to_home)
            self._seat_winner(next_match, partner_winner, partner.winner_to_home)
            await self.db.flush()

        await self._notify_advancement(next_match, [winner, partner_winner])
        return next_match

    @staticmethod
    def _seat_winner(next_match: Match, team_id: int, to_home: bool):
        if to_home:
            next_match.home_team_id = team_id
        else:
            next_match.away_team_id = team_id

    async def on_match_decided(self, tournament: Tournament, match: Match) -> Optional[Match]:
        """Everything that follows an APPROVED playoff match."""
        if match.is_third_place_match:
            await self._notify_third_place_result(match)
            await self.check_tournament_completion(tournament)
            return None

        next_match = await self.propagate_winner(match)
        loser = determine_loser(match)

        if match.stage == MatchStage.SEMI_FINAL:
            await self.check_and_create_third_place_match(tournament, match)
        elif loser is not None and match.stage != MatchStage.FINAL:
            stage_name = get_stage_display_name(match.stage)
            await self._notify_teams([loser], lambda name: NotificationService.eliminated(name, stage_name))

        await self.check_tournament_completion(tournament)
        return next_match

    # =========================================================================
    # Third place
    # =========================================================================

    async def find_third_place_match(self, tournament_id: int) -> Optional[Match]:
        matches = await self.matches.find_by_stage(tournament_id, MatchStage.THIRD_PLACE)
        return matches[0] if matches else None

    async def check_and_create_third_place_match(self, tournament: Tournament, semi: Match) -> Optional[Match]:
        """
        After a semifinal is decided:
        - one real semifinal (the other was a bye): its loser is third
        - two real semifinals, both decided: create the third place match
        """
        if semi.stage != MatchStage.SEMI_FINAL:
            return None

        semis = await self.matches.find_by_stage(tournament.id, MatchStage.SEMI_FINAL)
        real_semis = [m for m in semis if not m.is_bye]

        if len(real_semis) == 1:
            loser = determine_loser(real_semis[0])
            if loser is not None:
                logger.info(f"Tournament {tournament.id}: team {loser} takes third place automatically")
                await self._notify_teams([loser], NotificationService.automatic_third_place)
            return None

        if len(real_semis) != 2 or not all(is_decided(m) for m in real_semis):
            return None

        if not FeatureFlags.FEATURE_THIRD_PLACE_MATCH:
            await self._notify_teams(
                [determine_loser(m) for m in real_semis],
                lambda name: NotificationService.eliminated(name, get_stage_display_name(MatchStage.SEMI_FINAL)),
            )
            return None

        return await self.create_third_place_match(tournament, real_semis[0], real_semis[1])

    async def create_third_place_match(self, tournament: Tournament, semi_a: Match, semi_b: Match) -> Optional[Match]:
        existing = await self.find_third_place_match(tournament.id)
        if existing is not None:
            logger.info(f"Tournament {tournament.id}: third place match {existing.id} already exists")
            return existing

        loser_a, loser_b = determine_loser(semi_a), determine_loser(semi_b)
        if loser_a is None or loser_b is None:
            logger.warning(f"Tournament {tournament.id}: semifinal losers undetermined; no third place match")
            return None

        first, second = sorted([semi_a, semi_b], key=lambda m: m.bracket_position)
        home, away = determine_loser(first), determine_loser(second)
        match = Match(
            tournament_id=tournament.id,
            home_team_id=home,
            away_team_id=away,
            round=max(semi_a.round, semi_b.round) + 1,
            stage=MatchStage.THIRD_PLACE,
            bracket_position=THIRD_PLACE_POSITION,
            state=MatchState.CREATED,
            is_bye=False,
            is_third_place_match=True,
            decided_by_penalties=False,
            version=1,
        )
        await self.matches.save(match)
        logger.info(f"Tournament {tournament.id}: created third place match {match.id} ({home} vs {away})")

        names = await self.teams.find_by_ids([home, away])
        if home in names and away in names:
            self.notifications.enqueue(
                names[home].participant_id, NotificationService.third_place_match(names[home].name, names[away].name)
            )
            self.notifications.enqueue(
                names[away].participant_id, NotificationService.third_place_match(names[away].name, names[home].name)
            )
        return match

    # =========================================================================
    # Administrative decisions
    # =========================================================================

    async def disqualify_team(self, tournament: Tournament, match: Match, team_id: int) -> Match:
        """
        Award the match 3-0 to the opponent of team_id and advance.

        Raises:
            MatchAlreadyDecidedError: If the match is already approved
            TeamNotInMatchError: If team_id does not play in the match
        """
        if not MatchLifecycle.can_transition(match, MatchState.APPROVED, force=True):
            raise MatchAlreadyDecidedError(match.id)
        if match.is_bye or team_id not in (match.home_team_id, match.away_team_id):
            raise TeamNotInMatchError(team_id, match.id)

        match.clear_scores()
        if team_id == match.home_team_id:
            match.home_score, match.away_score = 0, WALKOVER_SCORE
        else:
            match.home_score, match.away_score = WALKOVER_SCORE, 0
        match.reject_reason = None
        MatchLifecycle.transition(match, MatchState.APPROVED, force=True)
        tournament.touch()
        await self.db.flush()

        logger.info(f"Match {match.id}: team {team_id} disqualified, scored {match.home_score}-{match.away_score}")

        if tournament.format == TournamentFormat.PLAYOFF:
            await self.on_match_decided(tournament, match)
        return match

    async def record_walkover(self, tournament: Tournament, match: Match, winner_team_id: int) -> Match:
        if winner_team_id not in (match.home_team_id, match.away_team_id) or match.is_bye:
            raise TeamNotInMatchError(winner_team_id, match.id)
        loser = match.away_team_id if winner_team_id == match.home_team_id else match.home_team_id
        return await self.disqualify_team(tournament, match, loser)

    # =========================================================================
    # Completion and placements
    # =========================================================================

    async def check_tournament_completion(self, tournament: Tournament) -> bool:
        """
        Finish a playoff once the final (and the third place match, if
        any) is decided. Returns True if the tournament is finished.
        """
        if tournament.format != TournamentFormat.PLAYOFF:
            return False
        if tournament.status == TournamentStatus.FINISHED:
            return True

        final = await self.matches.find_final_match(tournament.id)
        if final is None or not final.is_completed or not is_decided(final):
            return False

        third = await self.find_third_place_match(tournament.id)
        if third is not None and not is_decided(third):
            logger.info(f"Tournament {tournament.id}: final decided, waiting for third place match {third.id}")
            return False

        TournamentLifecycle.transition(tournament, TournamentStatus.FINISHED)
        await self.db.flush()

        winner, runner_up = determine_winner(final), determine_loser(final)
        logger.info(f"Tournament {tournament.id} finished: winner {winner}, runner-up {runner_up}")

        names = await self.teams.find_by_ids([winner, runner_up])
        for team_id, position in ((winner, 1), (runner_up, 2)):
            team = names.get(team_id)
            if team is not None:
                self.notifications.enqueue(
                    team.participant_id,
                    NotificationService.tournament_finished(tournament.name, team.name, position),
                )
        return True

    async def calculate_bracket_placements(self, tournament: Tournament) -> List[TeamStanding]:
        """
        Rank teams by how far they got:
        1/2 from the final, 3/4 from the third place match or the
        semifinal losers, then losers of each earlier round, latest
        round first. Teams still alive come last in registration order.
        """
        teams = await self.teams.find_by_tournament(tournament.id)
        matches = await self.matches.find_by_tournament(tournament.id)
        team_by_id = {team.id: team for team in teams}

        standings: Dict[int, TeamStanding] = OrderedDict()
        for team in teams:
            standings[team.id] = TeamStanding(team=team)
        for match in matches:
            if match.is_real and match.is_completed:
                if match.home_team_id in standings and match.away_team_id in standings:
                    standings[match.home_team_id].add_match(match.home_score, match.away_score)
                    standings[match.away_team_id].add_match(match.away_score, match.home_score)

        placed: List[int] = []

        def place(team_id: Optional[int]):
            if team_id is not None and team_id in team_by_id and team_id not in placed:
                placed.append(team_id)

        final = next((m for m in matches if m.stage == MatchStage.FINAL), None)
        if final is not None and is_decided(final):
            place(determine_winner(final))
            place(determine_loser(final))

        third = next((m for m in matches if m.is_third_place_match), None)
        if third is not None and is_decided(third):
            place(determine_winner(third))
            place(determine_loser(third))
        else:
            for semi in sorted(
                (m for m in matches if m.stage == MatchStage.SEMI_FINAL and not m.is_bye),
                key=lambda m: m.bracket_position,
            ):
                if is_decided(semi):
                    place(determine_loser(semi))

        knockout = [m for m in matches if not m.is_third_place_match and m.is_real and is_decided(m)]
        for match in sorted(knockout, key=lambda m: (-m.round, m.bracket_position)):
            place(determine_loser(match))

        for team in teams:
            place(team.id)

        ordered = [standings[team_id] for team_id in placed]
        for index, standing in enumerate(ordered, start=1):
            standing.position = index
        return ordered

    async def get_bracket_tree(self, tournament_id: int) -> Dict[int, List[Match]]:
        """Matches grouped by round, each round ordered by bracket position."""
        tree: Dict[int, List[Match]] = OrderedDict()
        for match in await self.matches.find_by_tournament(tournament_id):
            tree.setdefault(match.round, []).append(match)
        return tree

    # =========================================================================
    # Notifications
    # =========================================================================

    async def _notify_teams(self, team_ids, build):
        teams = await self.teams.find_by_ids([t for t in team_ids if t is not None])
        for team_id in team_ids:
            team = teams.get(team_id)
            if team is not None:
                self.notifications.enqueue(team.participant_id, build(team.name))

    async def _notify_advancement(self, next_match: Match, team_ids):
        stage_name = get_stage_display_name(next_match.stage)
        await self._notify_teams(team_ids, lambda name: NotificationService.advanced(name, stage_name))

    async def _notify_third_place_result(self, match: Match):
        winner = determine_winner(match)
        if winner is not None:
            await self._notify_teams([winner], NotificationService.third_place_won)
