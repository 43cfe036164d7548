"""Routes for submitting, observing and restoring generation jobs."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps import get_generation_store
from app.api.models import JobObservationResponse, JobResponse, ReconcileFlagRequest, RestoreResponse, SubmitJobRequest, SubmitJobResponse
from app.config import Settings, get_settings
from app.core.security import CurrentUser, get_current_user
from app.notifications.factory import get_broadcaster
from app.notifications.service import JobUpdateBroadcaster
from app.providers.registry import ProviderRegistry, get_provider_registry
from app.services.polling import get_owned_job, poll_job_once
from app.services.reconciliation import flag_job_for_reconciliation
from app.services.restoration import mark_result_seen, restore_tool_state
from app.services.submission import submit_generation_job
from app.storage.generation_repo import GenerationStore

router = APIRouter()


@router.post("/jobs", response_model=SubmitJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(
  payload: SubmitJobRequest,
  current_user: CurrentUser = Depends(get_current_user),  # noqa: B008
  store: GenerationStore = Depends(get_generation_store),  # noqa: B008
  providers: ProviderRegistry = Depends(get_provider_registry),  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
) -> SubmitJobResponse:
  """Submit one job to a provider and return its handle without waiting."""
  result = await submit_generation_job(store, providers, settings, user_id=current_user.uid, tool_id=payload.tool_id, provider=payload.provider, job_input=payload.input)
  return SubmitJobResponse(job_id=result.job_id, estimated_credits=result.estimated_credits)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, current_user: CurrentUser = Depends(get_current_user), store: GenerationStore = Depends(get_generation_store)) -> JobResponse:  # noqa: B008
  """Return the persisted state of a job owned by the caller."""
  job = await get_owned_job(store, job_id=job_id, user_id=current_user.uid)
  return JobResponse.from_record(job)


@router.post("/jobs/{job_id}/poll", response_model=JobObservationResponse)
async def poll_job(
  job_id: str,
  current_user: CurrentUser = Depends(get_current_user),  # noqa: B008
  store: GenerationStore = Depends(get_generation_store),  # noqa: B008
  providers: ProviderRegistry = Depends(get_provider_registry),  # noqa: B008
  broadcaster: JobUpdateBroadcaster = Depends(get_broadcaster),  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
) -> JobObservationResponse:
  """Run one poll step; 503 means the provider could not be reached this time."""
  observation = await poll_job_once(store, providers, broadcaster, settings, job_id=job_id, user_id=current_user.uid)
  return JobObservationResponse.from_observation(observation)


@router.post("/jobs/{job_id}/reconcile-flag", response_model=JobResponse)
async def flag_job(job_id: str, payload: ReconcileFlagRequest, current_user: CurrentUser = Depends(get_current_user), store: GenerationStore = Depends(get_generation_store)) -> JobResponse:  # noqa: B008
  """Record that the client gave up waiting; the job status is left unchanged."""
  job = await flag_job_for_reconciliation(store, job_id=job_id, user_id=current_user.uid, reason=payload.reason)
  return JobResponse.from_record(job)


@router.post("/jobs/{job_id}/seen", status_code=status.HTTP_204_NO_CONTENT)
async def acknowledge_job(job_id: str, response: Response, current_user: CurrentUser = Depends(get_current_user), store: GenerationStore = Depends(get_generation_store)) -> Response:  # noqa: B008
  """Acknowledge a job's output so restoration stops surfacing it."""
  await mark_result_seen(store, job_id=job_id, user_id=current_user.uid)
  response.status_code = status.HTTP_204_NO_CONTENT
  return response


@router.get("/restore", response_model=RestoreResponse)
async def restore_state(
  tool_id: str = Query(min_length=1, max_length=64),
  current_user: CurrentUser = Depends(get_current_user),  # noqa: B008
  store: GenerationStore = Depends(get_generation_store),  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
) -> RestoreResponse:
  """Return active jobs and unseen recent results for a tool."""
  snapshot = await restore_tool_state(store, settings, user_id=current_user.uid, tool_id=tool_id)
  return RestoreResponse(active=[JobResponse.from_record(job) for job in snapshot.active], recently_completed=[JobResponse.from_record(job) for job in snapshot.recently_completed])
