import logging
from collections import defaultdict
from typing import Dict, List, Optional

from outing_service.errors import InvalidStateError, NotFoundError, UnauthorizedError
from outing_service.models import EventStatus, InvitationStatus, VenueOption, Vote, utcnow
from outing_service.repositories import EventRepository, OptionRepository, ParticipantRepository, VoteRepository

logger = logging.getLogger("outing_service")

VOTING_STATUSES = (EventStatus.AI_RECOMMENDING, EventStatus.VOTING)


class VoteTally:
  def __init__(
    self,
    events: EventRepository,
    participants: ParticipantRepository,
    options: OptionRepository,
    votes: VoteRepository,
  ) -> None:
    self.events = events
    self.participants = participants
    self.options = options
    self.votes = votes

  async def cast_vote(
    self,
    event_id: str,
    option_id: str,
    voter_id: str,
    value: int = 1,
    comment: Optional[str] = None,
  ) -> Vote:
    """Record a vote; a second vote on the same option replaces the first."""
    event = await self.events.get(event_id)
    if event is None:
      raise NotFoundError(f"Event {event_id} not found")
    if event.status not in VOTING_STATUSES or event.options_locked:
      raise InvalidStateError(f"Voting is not open while the event is {event.status.value}")

    option = await self.options.get(option_id)
    if option is None or option.event_id != event_id:
      raise NotFoundError(f"Venue option {option_id} not found for this event")

    participant = await self.participants.get(event_id, voter_id)
    if participant is None or participant.invitation_status != InvitationStatus.ACCEPTED:
      raise UnauthorizedError("Only accepted participants can vote")

    existing = await self.votes.get(event_id, option_id, voter_id)
    if existing is not None:
      existing.value = value
      existing.comment = comment
      existing.voted_at = utcnow()
      logger.info("Vote updated event=%s option=%s voter=%s", event_id, option_id, voter_id)
      return await self.votes.update(existing)

    vote = Vote(event_id=event_id, option_id=option_id, voter_id=voter_id, value=value, comment=comment)
    logger.info("Vote cast event=%s option=%s voter=%s", event_id, option_id, voter_id)
    return await self.votes.create(vote)

  async def statistics(self, event_id: str) -> Dict[str, int]:
    """Summed vote value per option id, in option creation order."""
    totals: Dict[str, int] = defaultdict(int)
    for vote in await self.votes.list_for_event(event_id):
      totals[vote.option_id] += vote.value
    options = await self.options.list_for_event(event_id)
    return {o.id: totals.get(o.id, 0) for o in options}

  async def winning_option(self, event_id: str) -> Optional[VenueOption]:
    options = await self.options.list_for_event(event_id)
    votes = await self.votes.list_for_event(event_id)

    if votes:
      totals: Dict[str, int] = defaultdict(int)
      for vote in votes:
        totals[vote.option_id] += vote.value
      voted: List[VenueOption] = [o for o in options if o.id in totals]
      if voted:
        # max keeps the first of equal totals, and options come in creation order
        return max(voted, key=lambda o: totals[o.id])

    scored = [o for o in options if o.score is not None]
    if not scored:
      return None
    return max(scored, key=lambda o: o.score)
