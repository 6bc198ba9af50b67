"""
Tournament orchestration: creation, registration, start and cancel.
"""
import pytest

from conftest import ORGANIZER, participant
from matchday.config.feature_flags import FeatureFlags
from matchday.orm.match import MatchStage
from matchday.orm.tournament import TournamentFormat, TournamentStatus
from matchday.services.tournament_service import (
    InvalidTournamentError, RegistrationError, TournamentNotFoundError, TournamentStateError,
    UnauthorizedOrganizerError
)
from matchday.state_machines.tournament_lifecycle import TournamentLockedError


class TestCreate:

    async def test_defaults(self, tournament_service):
        tournament = await tournament_service.create_tournament("  Spring League ", TournamentFormat.LEAGUE, ORGANIZER)
        assert tournament.id is not None
        assert tournament.name == "Spring League"
        assert tournament.status == TournamentStatus.CREATED
        assert tournament.is_active is False
        assert tournament.number_of_rounds == 1

    @pytest.mark.parametrize("kwargs", [
        {"name": "   "},
        {"number_of_rounds": 3},
        {"max_participants": 1},
    ])
    async def test_invalid_settings(self, tournament_service, kwargs):
        params = {"name": "Cup", "format": TournamentFormat.LEAGUE, "created_by": ORGANIZER}
        params.update(kwargs)
        with pytest.raises(InvalidTournamentError):
            await tournament_service.create_tournament(**params)

    async def test_unknown_tournament(self, tournament_service):
        with pytest.raises(TournamentNotFoundError):
            await tournament_service.get_tournament(404)


class TestRegistration:

    async def test_join_and_list(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=3, start=False)
        teams = await tournament_service.get_teams(tournament.id)
        assert [t.name for t in teams] == ["Team 0", "Team 1", "Team 2"]
        assert [t.participant_id for t in teams] == [participant(0), participant(1), participant(2)]

    async def test_one_team_per_participant(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=1, start=False)
        with pytest.raises(RegistrationError) as exc:
            await tournament_service.join_tournament(tournament.id, participant(0), "Another Name")
        assert exc.value.code == "ALREADY_JOINED"

    async def test_team_names_unique_ignoring_case(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=1, start=False)
        with pytest.raises(RegistrationError) as exc:
            await tournament_service.join_tournament(tournament.id, participant(9), "TEAM 0")
        assert exc.value.code == "DUPLICATE_TEAM_NAME"

    async def test_blank_team_name(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=0, start=False)
        with pytest.raises(RegistrationError) as exc:
            await tournament_service.join_tournament(tournament.id, participant(0), "   ")
        assert exc.value.code == "INVALID_TEAM_NAME"

    async def test_full_tournament(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=2, start=False, max_participants=2)
        with pytest.raises(RegistrationError) as exc:
            await tournament_service.join_tournament(tournament.id, participant(5), "Late")
        assert exc.value.code == "TOURNAMENT_FULL"

    async def test_closed_after_start(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=2)
        with pytest.raises(RegistrationError) as exc:
            await tournament_service.join_tournament(tournament.id, participant(5), "Late")
        assert exc.value.code == "REGISTRATION_CLOSED"

    async def test_leave_before_start(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=3, start=False)
        await tournament_service.leave_tournament(tournament.id, participant(1))
        assert [t.name for t in await tournament_service.get_teams(tournament.id)] == ["Team 0", "Team 2"]

    async def test_open_registration_is_organizer_only(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=0, start=False)
        tournament_id = tournament.id
        with pytest.raises(UnauthorizedOrganizerError):
            await tournament_service.open_registration(tournament_id, participant(0))
        opened = await tournament_service.open_registration(tournament_id, ORGANIZER)
        assert opened.status == TournamentStatus.REGISTRATION

    async def test_auto_start_when_full(self, make_tournament, tournament_service, adapter):
        tournament, _ = await make_tournament(team_count=4, start=False, max_participants=4, auto_start=True)
        refreshed = await tournament_service.get_tournament(tournament.id)
        assert refreshed.status == TournamentStatus.STARTED
        assert len(await tournament_service.get_matches(tournament.id)) == 6
        assert adapter.messages_for(participant(3))

    async def test_auto_start_respects_flag(self, make_tournament, tournament_service, monkeypatch):
        monkeypatch.setattr(FeatureFlags, "FEATURE_AUTO_START", False)
        tournament, _ = await make_tournament(team_count=4, start=False, max_participants=4, auto_start=True)
        assert (await tournament_service.get_tournament(tournament.id)).status == TournamentStatus.CREATED


class TestStart:

    async def test_league_start(self, make_tournament, tournament_service, adapter):
        tournament, matches = await make_tournament(team_count=4)

        assert len(matches) == 6
        assert all(m.stage == MatchStage.LEAGUE_ROUND for m in matches)
        started = await tournament_service.get_tournament(tournament.id)
        assert started.status == TournamentStatus.STARTED
        assert started.is_active is True
        assert started.start_date is not None
        for i in range(4):
            assert any("has started" in m for m in adapter.messages_for(participant(i)))

    async def test_double_round_robin(self, make_tournament):
        tournament, matches = await make_tournament(team_count=3, number_of_rounds=2)
        assert len([m for m in matches if not m.is_bye]) == 6
        assert len([m for m in matches if m.is_bye]) == 6
        assert max(m.round for m in matches) == 6

    async def test_start_twice_returns_existing(self, make_tournament, tournament_service):
        tournament, matches = await make_tournament(team_count=4)
        again = await tournament_service.start_tournament(tournament.id, ORGANIZER)
        assert sorted(m.id for m in again) == sorted(m.id for m in matches)
        assert len(await tournament_service.get_matches(tournament.id)) == 6

    async def test_needs_two_teams(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=1, start=False)
        tournament_id = tournament.id
        with pytest.raises(TournamentStateError):
            await tournament_service.start_tournament(tournament_id, ORGANIZER)
        assert await tournament_service.get_matches(tournament_id) == []

    async def test_only_organizer_starts(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=2, start=False)
        with pytest.raises(UnauthorizedOrganizerError):
            await tournament_service.start_tournament(tournament.id, participant(0))

    async def test_matches_by_round(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=4)
        round_two = await tournament_service.get_matches(tournament.id, round_number=2)
        assert len(round_two) == 2
        assert all(m.round == 2 for m in round_two)


class TestCancelAndUpdate:

    async def test_cancel_locks_the_tournament(self, make_tournament, tournament_service, result_service, adapter):
        tournament, matches = await make_tournament(team_count=2)
        match_id = matches[0].id

        cancelled = await tournament_service.cancel_tournament(tournament.id, ORGANIZER)
        assert cancelled.status == TournamentStatus.CANCELLED
        assert cancelled.is_active is False
        assert any("cancelled" in m for m in adapter.messages_for(participant(0)))

        with pytest.raises(TournamentLockedError):
            await result_service.submit_result(match_id, participant(0), 1, 0)

    async def test_cancel_twice(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=2)
        tournament_id = tournament.id
        await tournament_service.cancel_tournament(tournament_id, ORGANIZER)
        with pytest.raises(TournamentStateError):
            await tournament_service.cancel_tournament(tournament_id, ORGANIZER)

    async def test_update_before_start(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=2, start=False)
        updated = await tournament_service.update_tournament(
            tournament.id, ORGANIZER, name=" Renamed ", number_of_rounds=2
        )
        assert updated.name == "Renamed"
        assert updated.number_of_rounds == 2

    async def test_update_after_start(self, make_tournament, tournament_service):
        tournament, _ = await make_tournament(team_count=2)
        with pytest.raises(TournamentStateError):
            await tournament_service.update_tournament(tournament.id, ORGANIZER, name="Too late")

    async def test_delete(self, make_tournament, tournament_service, play):
        tournament, matches = await make_tournament(team_count=2)
        await play(matches[0], 1, 0)
        tournament_id = tournament.id

        await tournament_service.delete_tournament(tournament_id, ORGANIZER)
        with pytest.raises(TournamentNotFoundError):
            await tournament_service.get_tournament(tournament_id)


class TestLookups:

    async def test_list_tournaments(self, make_tournament, tournament_service):
        running, _ = await make_tournament(team_count=2, name="Running")
        open_cup, _ = await make_tournament(team_count=2, start=False, name="Open")

        assert [t.id for t in await tournament_service.list_tournaments()] == [running.id, open_cup.id]
        assert [t.id for t in await tournament_service.list_tournaments(active_only=True)] == [running.id]
        created = await tournament_service.list_tournaments(status=TournamentStatus.CREATED)
        assert [t.id for t in created] == [open_cup.id]
        assert await tournament_service.list_tournaments(active_only=True, status=TournamentStatus.CREATED) == []

    async def test_finished_tournament_is_not_active(self, make_tournament, tournament_service, play):
        tournament, (match,) = await make_tournament(team_count=2)
        await play(match, 1, 0)
        assert await tournament_service.list_tournaments(active_only=True) == []

    async def test_list_for_participant_by_role(self, make_tournament, tournament_service):
        first, _ = await make_tournament(team_count=2, name="First")
        second, _ = await make_tournament(team_count=1, start=False, name="Second")
        own = await tournament_service.create_tournament("Own Cup", TournamentFormat.PLAYOFF, participant(0))

        ids = [t.id for t in await tournament_service.list_for_participant(participant(0))]
        assert ids == [first.id, second.id, own.id]
        played = await tournament_service.list_for_participant(participant(0), role="player")
        assert [t.id for t in played] == [first.id, second.id]
        organized = await tournament_service.list_for_participant(participant(0), role="organizer")
        assert [t.id for t in organized] == [own.id]
        assert [t.id for t in await tournament_service.list_for_participant(participant(1))] == [first.id]
        assert await tournament_service.list_for_participant("stranger@matchday.test") == []

    async def test_unknown_role(self, tournament_service):
        with pytest.raises(InvalidTournamentError):
            await tournament_service.list_for_participant(participant(0), role="referee")
