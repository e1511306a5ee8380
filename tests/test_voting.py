import asyncio

import pytest

from conftest import ORGANIZER, event_request, invite_and_accept
from outing_service.errors import InvalidStateError, NotFoundError, UnauthorizedError
from outing_service.models import EventStatus, VenueOption


async def voting_event(services):
  event = await services.lifecycle.create_event(ORGANIZER, event_request(expected_attendees=3))
  await invite_and_accept(services, event.id, ["u1", "u2", "u3"], ["u1", "u2"])
  await services.lifecycle.start_recommendations(event.id, ORGANIZER)
  options = await services.store.option_repo.list_for_event(event.id)
  return event, options


def test_second_vote_updates_in_place(services):
  async def scenario():
    event, options = await voting_event(services)
    first = await services.tally.cast_vote(event.id, options[0].id, "u1", 1, "nice")
    second = await services.tally.cast_vote(event.id, options[0].id, "u1", 3, "even better")
    return event, first, second, await services.store.vote_repo.list_for_event(event.id)

  event, first, second, votes = asyncio.run(scenario())
  assert len(votes) == 1
  assert votes[0].value == 3
  assert votes[0].comment == "even better"
  assert second.voted_at >= first.voted_at


def test_statistics_sum_values_per_option(services):
  async def scenario():
    event, options = await voting_event(services)
    await services.tally.cast_vote(event.id, options[0].id, "u1", 2)
    await services.tally.cast_vote(event.id, options[0].id, "u2", 1)
    await services.tally.cast_vote(event.id, options[1].id, "u2", 1)
    return options, await services.tally.statistics(event.id)

  options, stats = asyncio.run(scenario())
  assert stats[options[0].id] == 3
  assert stats[options[1].id] == 1


def test_only_accepted_participants_vote_while_voting_is_open(services):
  async def scenario():
    event, options = await voting_event(services)
    with pytest.raises(UnauthorizedError):
      await services.tally.cast_vote(event.id, options[0].id, "u3")
    with pytest.raises(NotFoundError):
      await services.tally.cast_vote(event.id, "not-an-option", "u1")
    await services.lifecycle.finalize(event.id, ORGANIZER, option_id=options[0].id)
    with pytest.raises(InvalidStateError):
      await services.tally.cast_vote(event.id, options[0].id, "u1")
    return await services.lifecycle.load(event.id)

  assert asyncio.run(scenario()).status == EventStatus.CONFIRMED


def test_tied_votes_go_to_first_created_option(services):
  async def scenario():
    event, options = await voting_event(services)
    await services.tally.cast_vote(event.id, options[1].id, "u1")
    await services.tally.cast_vote(event.id, options[0].id, "u2")
    return options, await services.tally.winning_option(event.id)

  options, winner = asyncio.run(scenario())
  assert winner.id == options[0].id


def test_winner_without_votes_is_best_scored_option(services):
  async def scenario():
    event = await services.lifecycle.create_event(ORGANIZER, event_request())
    repo = services.store.option_repo
    await repo.create(VenueOption(event_id=event.id, venue_id="a", score=40.0))
    best = await repo.create(VenueOption(event_id=event.id, venue_id="b", score=80.0))
    await repo.create(VenueOption(event_id=event.id, venue_id="c", score=80.0))
    await repo.create(VenueOption(event_id=event.id, venue_id="d"))
    return best, await services.tally.winning_option(event.id)

  best, winner = asyncio.run(scenario())
  assert winner.id == best.id


def test_winner_is_none_when_nothing_is_scored(services):
  async def scenario():
    event = await services.lifecycle.create_event(ORGANIZER, event_request())
    await services.store.option_repo.create(VenueOption(event_id=event.id, venue_id="a"))
    return await services.tally.winning_option(event.id)

  assert asyncio.run(scenario()) is None


def test_options_keep_creation_order(services):
  async def scenario():
    event = await services.lifecycle.create_event(ORGANIZER, event_request())
    repo = services.store.option_repo
    for venue_id in ("c", "a", "b"):
      await repo.create(VenueOption(event_id=event.id, venue_id=venue_id))
    return await repo.list_for_event(event.id)

  options = asyncio.run(scenario())
  assert [o.venue_id for o in options] == ["c", "a", "b"]
  assert [o.sequence for o in options] == [1, 2, 3]
  assert services.store.next_option_sequence() == 4
