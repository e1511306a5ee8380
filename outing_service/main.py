import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Dict, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from outing_service.acceptance import InviteResult
from outing_service.config import load_settings
from outing_service.errors import OutingServiceError
from outing_service.maintenance import run_periodically
from outing_service.models import (
  AddOptionRequest,
  AnalysisProgress,
  CancelRequest,
  CreateEventRequest,
  Event,
  EventDetails,
  FinalizeRequest,
  InviteRequest,
  Participant,
  RescheduleRequest,
  SearchArea,
  UpdateEventRequest,
  VenueOption,
  Vote,
  VoteRequest,
)
from outing_service.wiring import Services, build_services

# Load .env file when running locally so AI backend keys are picked up.
load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("outing_service")

_services: Optional[Services] = None


def get_services() -> Services:
  global _services
  if _services is None:
    _services = build_services(load_settings())
  return _services


@asynccontextmanager
async def lifespan(app: FastAPI):
  services = get_services()
  stop = asyncio.Event()
  sweeper = None
  interval = services.settings.maintenance_interval_seconds
  if interval > 0:
    sweeper = asyncio.create_task(run_periodically(services.lifecycle, interval, stop))
    logger.info("Maintenance sweeps every %ss", interval)
  yield
  stop.set()
  if sweeper is not None:
    await sweeper
  await services.dispatcher.drain()


app = FastAPI(
  title="Group Outing Planner",
  version="0.1.0",
  description="Plans group outings: invitations, venue recommendations, voting and confirmation.",
  lifespan=lifespan,
)

app.add_middleware(
  CORSMiddleware,
  allow_origins=["*"],
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)


@app.exception_handler(OutingServiceError)
async def outing_error_handler(request: Request, exc: OutingServiceError) -> JSONResponse:
  return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
  if not x_user_id:
    raise HTTPException(status_code=401, detail="X-User-Id header is required")
  return x_user_id


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.post("/events", response_model=Event, status_code=201)
async def create_event(
  payload: CreateEventRequest,
  user: str = Depends(current_user),
  services: Services = Depends(get_services),
) -> Event:
  return await services.lifecycle.create_event(user, payload)


@app.get("/events/{event_id}", response_model=EventDetails)
async def get_event(event_id: str, services: Services = Depends(get_services)) -> EventDetails:
  return await services.lifecycle.get_event(event_id)


@app.patch("/events/{event_id}", response_model=Event)
async def update_event(
  event_id: str,
  payload: UpdateEventRequest,
  user: str = Depends(current_user),
  services: Services = Depends(get_services),
) -> Event:
  return await services.lifecycle.update_event(event_id, user, payload)


@app.post("/events/{event_id}/invitations", response_model=InviteResult)
async def invite(
  event_id: str,
  payload: InviteRequest,
  user: str = Depends(current_user),
  services: Services = Depends(get_services),
) -> InviteResult:
  return await services.tracker.invite(event_id, user, payload.user_ids)


@app.post("/events/{event_id}/invitations/accept", response_model=Participant)
async def accept_invitation(
  event_id: str,
  user: str = Depends(current_user),
  services: Services = Depends(get_services),
) -> Participant:
  return await services.tracker.accept(event_id, user)


@app.post("/events/{event_id}/invitations/decline", response_model=Participant)
async def decline_invitation(
  event_id: str,
  user: str = Depends(current_user),
  services: Services = Depends(get_services),
) -> Participant:
  return await services.tracker.decline(event_id, user)


@app.delete("/events/{event_id}/participants/{user_id}")
async def remove_participant(
  event_id: str,
  user_id: str,
  user: str = Depends(current_user),
  services: Services = Depends(get_services),
) -> dict:
  await services.tracker.remove(event_id, user, user_id)
  return {"ok": True}


@app.post("/events/{event_id}/cancel", response_model=Event)
async def cancel_event(
  event_id: str,
  payload: CancelRequest,
  user: str = Depends(current_user),
  services: Services = Depends(get_services),
) -> Event:
  return await services.lifecycle.cancel_event(event_id, user, payload.reason)


@app.post("/events/{event_id}/reschedule", response_model=Event)
async def reschedule_event(
  event_id: str,
  payload: RescheduleRequest,
  user: str = Depends(current_user),
  services: Services = Depends(get_services),
) -> Event:
  return await services.lifecycle.reschedule_event(event_id, user, payload.local_start, payload.reason)


@app.post("/events/{event_id}/recommendations")
async def start_recommendations(
  event_id: str,
  search: Optional[SearchArea] = None,
  user: str = Depends(current_user),
  services: Services = Depends(get_services),
) -> dict:
  report = await services.lifecycle.start_recommendations(event_id, user, search)
  event = await services.lifecycle.load(event_id)
  return {"status": event.status.value, "report": report.model_dump(mode="json")}


@app.get("/events/{event_id}/progress", response_model=Optional[AnalysisProgress])
async def get_progress(event_id: str, services: Services = Depends(get_services)) -> Optional[AnalysisProgress]:
  event = await services.lifecycle.load(event_id)
  return event.analysis_progress


@app.post("/events/{event_id}/options", response_model=VenueOption, status_code=201)
async def add_option(
  event_id: str,
  payload: AddOptionRequest,
  user: str = Depends(current_user),
  services: Services = Depends(get_services),
) -> VenueOption:
  return await services.lifecycle.add_option(event_id, user, payload.venue_id)


@app.post("/events/{event_id}/votes", response_model=Vote)
async def cast_vote(
  event_id: str,
  payload: VoteRequest,
  user: str = Depends(current_user),
  services: Services = Depends(get_services),
) -> Vote:
  return await services.tally.cast_vote(event_id, payload.option_id, user, payload.value, payload.comment)


@app.get("/events/{event_id}/votes")
async def vote_statistics(event_id: str, services: Services = Depends(get_services)) -> dict:
  await services.lifecycle.load(event_id)
  totals: Dict[str, int] = await services.tally.statistics(event_id)
  winner = await services.tally.winning_option(event_id)
  return {"totals": totals, "winning_option_id": winner.id if winner else None}


@app.post("/events/{event_id}/finalize", response_model=Event)
async def finalize_event(
  event_id: str,
  payload: FinalizeRequest,
  user: str = Depends(current_user),
  services: Services = Depends(get_services),
) -> Event:
  return await services.lifecycle.finalize(event_id, user, payload.option_id, payload.venue_id)


@app.post("/events/{event_id}/complete", response_model=Event)
async def complete_event(
  event_id: str,
  user: str = Depends(current_user),
  services: Services = Depends(get_services),
) -> Event:
  return await services.lifecycle.complete_event(event_id, user)


if __name__ == "__main__":
  import uvicorn

  host = os.getenv("HOST", "0.0.0.0")
  port = int(os.getenv("PORT", "8000"))
  uvicorn.run("outing_service.main:app", host=host, port=port, reload=True)
