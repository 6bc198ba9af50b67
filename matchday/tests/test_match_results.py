"""
Result submission, approval and rejection; league completion.
"""
import pytest

from conftest import ORGANIZER, participant
from matchday.config.feature_flags import FeatureFlags
from matchday.orm.match import MatchState
from matchday.orm.tournament import TournamentStatus
from matchday.services.match_result_service import (
    InvalidMatchStateError, InvalidScoreError, MatchNotFoundError, ResultConflictError,
    UnauthorizedSubmitterError
)
from matchday.services.tournament_locks import wait_for_background_tasks
from matchday.state_machines.tournament_lifecycle import TournamentLockedError


def home_of(match):
    return participant(match.home_team_id - 1)


def away_of(match):
    return participant(match.away_team_id - 1)


def first_real(matches):
    return next(m for m in matches if not m.is_bye)


def is_final_standing(message):
    return (
        message.startswith("Congratulations")
        or " finished League Cup" in message
        or "League Cup is over" in message
    )


class TestSubmit:

    async def test_home_team_submits(self, make_tournament, result_service, adapter):
        tournament, matches = await make_tournament(team_count=4)
        match = first_real(matches)

        result = await result_service.submit_result(match.id, home_of(match), 2, 1, evidence_ref="shot-1.png")

        assert result.is_approved is False
        assert result.submitted_by == home_of(match)
        assert result.evidence_ref == "shot-1.png"
        assert match.state == MatchState.PENDING_APPROVAL
        assert match.home_score is None
        assert any("awaiting approval" in m for m in adapter.messages_for(ORGANIZER))

    async def test_away_team_cannot_submit(self, make_tournament, result_service):
        tournament, matches = await make_tournament(team_count=4)
        match = first_real(matches)
        match_id, away = match.id, away_of(match)

        with pytest.raises(UnauthorizedSubmitterError):
            await result_service.submit_result(match_id, away, 0, 1)
        assert await result_service.get_result_for_match(match_id) is None

    async def test_negative_score(self, make_tournament, result_service):
        tournament, matches = await make_tournament(team_count=4)
        match = first_real(matches)
        with pytest.raises(InvalidScoreError):
            await result_service.submit_result(match.id, home_of(match), -1, 0)

    async def test_second_submission_conflicts(self, make_tournament, result_service):
        tournament, matches = await make_tournament(team_count=4)
        match = first_real(matches)
        match_id, home = match.id, home_of(match)
        await result_service.submit_result(match_id, home, 1, 0)

        with pytest.raises(ResultConflictError):
            await result_service.submit_result(match_id, home, 3, 0)
        result = await result_service.get_result_for_match(match_id)
        assert (result.home_score, result.away_score) == (1, 0)

    async def test_bye_cannot_be_submitted(self, make_tournament, result_service):
        tournament, matches = await make_tournament(team_count=3)
        bye = next(m for m in matches if m.is_bye)
        with pytest.raises(InvalidMatchStateError):
            await result_service.submit_result(bye.id, home_of(bye), 1, 0)

    async def test_penalties_not_allowed_in_league(self, make_tournament, result_service):
        tournament, matches = await make_tournament(team_count=4)
        match = first_real(matches)
        with pytest.raises(InvalidScoreError):
            await result_service.submit_result(match.id, home_of(match), 1, 1, home_penalty=4, away_penalty=2)

    async def test_unknown_match(self, result_service):
        with pytest.raises(MatchNotFoundError):
            await result_service.submit_result(999, "nobody", 1, 0)


class TestApprove:

    async def test_approval_applies_the_score(self, make_tournament, result_service, tournament_service, adapter):
        tournament, matches = await make_tournament(team_count=4)
        match = first_real(matches)
        result = await result_service.submit_result(match.id, home_of(match), 3, 2)

        approved = await result_service.approve_result(result.id, ORGANIZER, comment="ok")

        assert approved.is_approved is True
        assert approved.reviewed_by == ORGANIZER
        assert approved.reviewed_at is not None
        assert approved.review_comment == "ok"
        assert match.state == MatchState.APPROVED
        assert (match.home_score, match.away_score) == (3, 2)
        assert (await tournament_service.get_tournament(tournament.id)).status == TournamentStatus.IN_PROGRESS
        assert any("approved" in m for m in adapter.messages_for(home_of(match)))

    async def test_only_organizer_approves(self, make_tournament, result_service):
        tournament, matches = await make_tournament(team_count=4)
        match = first_real(matches)
        match_id, home = match.id, home_of(match)
        result = await result_service.submit_result(match_id, home, 3, 2)
        result_id = result.id

        with pytest.raises(UnauthorizedSubmitterError):
            await result_service.approve_result(result_id, home)
        assert (await result_service.get_result_for_match(match_id)).is_approved is False

    async def test_approving_twice_is_a_no_op(self, make_tournament, result_service, adapter):
        tournament, matches = await make_tournament(team_count=4)
        match = first_real(matches)
        result = await result_service.submit_result(match.id, home_of(match), 1, 0)
        await result_service.approve_result(result.id, ORGANIZER)
        version = match.version
        sent = len(adapter.sent)

        again = await result_service.approve_result(result.id, ORGANIZER)

        assert again.is_approved is True
        assert match.version == version
        assert len(adapter.sent) == sent

    async def test_pending_and_approved_lists(self, make_tournament, result_service):
        tournament, matches = await make_tournament(team_count=4)
        real = [m for m in matches if not m.is_bye]
        first = await result_service.submit_result(real[0].id, home_of(real[0]), 1, 0)
        await result_service.submit_result(real[1].id, home_of(real[1]), 2, 2)
        await result_service.approve_result(first.id, ORGANIZER)

        pending = await result_service.list_pending_results(tournament.id)
        approved = await result_service.list_approved_results(tournament.id)
        assert [r.match_id for r in pending] == [real[1].id]
        assert [r.match_id for r in approved] == [real[0].id]


class TestReject:

    async def test_reject_reopens_the_match(self, make_tournament, result_service, adapter):
        tournament, matches = await make_tournament(team_count=4)
        match = first_real(matches)
        home = home_of(match)
        result = await result_service.submit_result(match.id, home, 5, 0)

        reopened = await result_service.reject_result(result.id, ORGANIZER, "Screenshot unreadable")

        assert reopened.state == MatchState.CREATED
        assert reopened.home_score is None and reopened.away_score is None
        assert reopened.reject_reason == "Screenshot unreadable"
        assert await result_service.get_result_for_match(match.id) is None
        assert any("Screenshot unreadable" in m for m in adapter.messages_for(home))

        resubmitted = await result_service.submit_result(match.id, home, 1, 0)
        assert resubmitted.match_id == match.id
        assert match.state == MatchState.PENDING_APPROVAL
        assert match.reject_reason is None

    async def test_approved_result_cannot_be_rejected(self, make_tournament, result_service):
        tournament, matches = await make_tournament(team_count=4)
        match = first_real(matches)
        result = await result_service.submit_result(match.id, home_of(match), 1, 0)
        await result_service.approve_result(result.id, ORGANIZER)

        with pytest.raises(ResultConflictError):
            await result_service.reject_result(result.id, ORGANIZER)

    async def test_only_organizer_rejects(self, make_tournament, result_service):
        tournament, matches = await make_tournament(team_count=4)
        match = first_real(matches)
        result = await result_service.submit_result(match.id, home_of(match), 1, 0)
        with pytest.raises(UnauthorizedSubmitterError):
            await result_service.reject_result(result.id, away_of(match))


class TestLeagueCompletion:

    async def play_all(self, matches, play):
        for match in matches:
            if not match.is_bye:
                await play(match, 2, 1)

    async def test_standings_follow_results(self, make_tournament, play, tournament_service):
        tournament, matches = await make_tournament(team_count=4)
        await self.play_all(matches, play)

        standings = await tournament_service.get_standings(tournament.id)
        assert [s.played for s in standings] == [3, 3, 3, 3]
        assert sum(s.points for s in standings) == 18
        assert [s.position for s in standings] == [1, 2, 3, 4]

    async def test_last_match_finishes_and_announces(self, make_tournament, play, tournament_service, adapter):
        tournament, matches = await make_tournament(team_count=3)
        await self.play_all(matches, play)

        finished = await tournament_service.get_tournament(tournament.id)
        assert finished.status == TournamentStatus.FINISHED
        assert finished.end_date is not None

        await wait_for_background_tasks(timeout=5)
        standings = await tournament_service.get_standings(tournament.id)
        for standing in standings:
            messages = adapter.messages_for(standing.team.participant_id)
            assert any(is_final_standing(m) for m in messages)
        winner = standings[0].team.participant_id
        assert any(m.startswith("Congratulations") for m in adapter.messages_for(winner))

    async def test_failed_delivery_does_not_stop_others(self, make_tournament, play, adapter):
        tournament, matches = await make_tournament(team_count=3)
        adapter.failing_addresses.add(participant(1))
        adapter.clear()

        await self.play_all(matches, play)
        await wait_for_background_tasks(timeout=5)

        assert adapter.messages_for(participant(1)) == []
        for i in (0, 2):
            assert any(is_final_standing(m) for m in adapter.messages_for(participant(i)))

    async def test_announcements_can_be_disabled(self, make_tournament, play, tournament_service, adapter,
                                                 monkeypatch):
        monkeypatch.setattr(FeatureFlags, "FEATURE_COMPLETION_ANNOUNCEMENTS", False)
        tournament, matches = await make_tournament(team_count=2)
        await self.play_all(matches, play)
        await wait_for_background_tasks(timeout=5)

        assert (await tournament_service.get_tournament(tournament.id)).status == TournamentStatus.FINISHED
        assert not any("Congratulations" in m for _, m in adapter.sent)

    async def test_finished_league_rejects_changes(self, make_tournament, play, result_service):
        tournament, matches = await make_tournament(team_count=2)
        match = matches[0]
        match_id, home_team_id = match.id, match.home_team_id
        await play(match, 1, 0)

        with pytest.raises(TournamentLockedError):
            await result_service.disqualify_team(match_id, home_team_id, ORGANIZER)
        assert (await result_service.get_result_for_match(match_id)).is_approved is True


class TestOpenMatches:

    async def test_open_matches_follow_the_result_flow(self, make_tournament, result_service):
        tournament, matches = await make_tournament(team_count=4)
        me = participant(0)
        my_team_id = 1

        open_matches = await result_service.list_open_matches(me)
        assert len(open_matches) == 3
        for match, is_home in open_matches:
            assert my_team_id in (match.home_team_id, match.away_team_id)
            assert is_home == (match.home_team_id == my_team_id)

        match, is_home = next((m, h) for m, h in open_matches if h)
        result = await result_service.submit_result(match.id, me, 2, 0)
        still_open = await result_service.list_open_matches(me)
        assert match.id in [m.id for m, _ in still_open]

        await result_service.approve_result(result.id, ORGANIZER)
        remaining = await result_service.list_open_matches(me)
        assert len(remaining) == 2
        assert match.id not in [m.id for m, _ in remaining]

    async def test_byes_are_not_listed(self, make_tournament, result_service):
        tournament, matches = await make_tournament(team_count=3)
        open_matches = await result_service.list_open_matches(participant(0))
        assert len(open_matches) == 2
        assert not any(m.is_bye for m, _ in open_matches)

    async def test_nothing_open_before_start_or_after_cancel(self, make_tournament, result_service,
                                                             tournament_service):
        waiting, _ = await make_tournament(team_count=2, start=False)
        assert await result_service.list_open_matches(participant(0)) == []

        await tournament_service.start_tournament(waiting.id, ORGANIZER)
        assert len(await result_service.list_open_matches(participant(0))) == 1

        await tournament_service.cancel_tournament(waiting.id, ORGANIZER)
        assert await result_service.list_open_matches(participant(0)) == []

    async def test_home_participant_check(self, make_tournament, result_service, tournament_service):
        tournament, _ = await make_tournament(team_count=2, start=False)
        home, away = await tournament_service.get_teams(tournament.id)
        assert result_service.is_home_participant(home, participant(0))
        assert not result_service.is_home_participant(away, participant(0))
        assert not result_service.is_home_participant(None, participant(0))
