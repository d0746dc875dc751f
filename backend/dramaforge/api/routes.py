"""API route handlers and Pydantic request/response schemas."""

import logging
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from dramaforge import __version__
from dramaforge.engine import DramaEngine
from dramaforge.schemas.project import (
    ArtStyle,
    Character,
    Language,
    Project,
    ProjectMode,
    Sequence,
    SourceKind,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def _engine(request: Request) -> DramaEngine:
    return request.app.state.engine


# ============================================================================
# Pydantic Schemas
# ============================================================================

class CreateProjectRequest(BaseModel):
    """Request schema for POST /api/projects."""
    name: str
    content: str
    style: str = ArtStyle.ANIMATION.value
    language: Language = "zh"
    mode: ProjectMode = "manual"
    source_kind: SourceKind = "full_text"


class RunRequest(BaseModel):
    """Optional body for POST /api/projects/{id}/run."""
    stage: Optional[str] = None


class RunResponse(BaseModel):
    """Response schema for the run/advance/retry endpoints."""
    project_id: str
    stage: str
    status_url: str


class CancelResponse(BaseModel):
    project_id: str
    status: str


class SourceTextRequest(BaseModel):
    text: str


class CharacterUpdate(BaseModel):
    """Partial character edit; only fields that are sent are changed."""
    name: Optional[str] = None
    visual_features: Optional[str] = None
    clothing: Optional[str] = None
    voice: Optional[str] = None
    portrait_url: Optional[str] = None
    reference_image: Optional[str] = None


class ReferenceImageRequest(BaseModel):
    image: Optional[str] = None


class SequenceUpdate(BaseModel):
    """Partial sequence edit; only fields that are sent are changed."""
    included_dialogues: Optional[list[str]] = None
    environment_anchor: Optional[str] = None
    storyboard_prompt: Optional[str] = None
    storyboard_image_url: Optional[str] = None
    characters_involved: Optional[list[str]] = None
    video_prompt: Optional[str] = None
    optimized_video_prompt: Optional[str] = None
    video_url: Optional[str] = None


class ToggleCharacterRequest(BaseModel):
    name: str


class MediaResponse(BaseModel):
    """Result of a single-item regeneration."""
    project_id: str
    url: str


class HealthResponse(BaseModel):
    status: str
    version: str


def _run_response(project_id: str, stage: str) -> RunResponse:
    return RunResponse(
        project_id=project_id,
        stage=stage,
        status_url=f"/api/projects/{project_id}",
    )


# ============================================================================
# Projects
# ============================================================================

@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok", version=__version__)


@router.post("/projects", status_code=201, response_model=Project)
async def create_project(body: CreateProjectRequest, request: Request):
    """Create a project; auto-mode projects start preprocessing right away."""
    project = _engine(request).create_project(
        body.name,
        body.content,
        style=body.style,
        language=body.language,
        mode=body.mode,
        source_kind=body.source_kind,
    )
    logger.info(f"Created project {project.id} ({body.mode} mode)")
    return project


@router.get("/projects", response_model=list[Project])
async def list_projects(request: Request):
    return _engine(request).list_projects()


@router.get("/projects/{project_id}", response_model=Project)
async def get_project(project_id: str, request: Request):
    return _engine(request).get_project(project_id)


@router.delete("/projects/{project_id}", status_code=204)
async def delete_project(project_id: str, request: Request):
    _engine(request).delete_project(project_id)


# ============================================================================
# Stage commands (runs execute in the background)
# ============================================================================

@router.post("/projects/{project_id}/run", status_code=202, response_model=RunResponse)
async def run_stage(project_id: str, request: Request, body: Optional[RunRequest] = None):
    """Run a stage (default: the one matching the current status) in the background.

    Supersedes any run already active for the project.
    """
    stage = _engine(request).start_stage(project_id, body.stage if body else None)
    return _run_response(project_id, stage)


@router.post("/projects/{project_id}/advance", status_code=202, response_model=RunResponse)
async def advance(project_id: str, request: Request):
    """Start the next stage. Returns 409 unless the current stage completed."""
    return _run_response(project_id, _engine(request).start_advance(project_id))


@router.post("/projects/{project_id}/retry", status_code=202, response_model=RunResponse)
async def retry(project_id: str, request: Request):
    """Re-run the failed stage. Returns 409 if nothing failed."""
    return _run_response(project_id, _engine(request).start_retry(project_id))


@router.post("/projects/{project_id}/cancel", response_model=CancelResponse)
async def cancel(project_id: str, request: Request):
    engine = _engine(request)
    engine.cancel(project_id)
    return CancelResponse(project_id=project_id, status=engine.get_project(project_id).status)


# ============================================================================
# Source text
# ============================================================================

@router.put("/projects/{project_id}/source", response_model=Project)
async def edit_source_text(project_id: str, body: SourceTextRequest, request: Request):
    return _engine(request).edit_source_text(project_id, body.text)


@router.post("/projects/{project_id}/continue", response_model=Project)
async def continue_story(project_id: str, request: Request):
    """Append an LLM continuation to the source text."""
    return await _engine(request).continue_story(project_id)


# ============================================================================
# Characters
# ============================================================================

@router.post("/projects/{project_id}/characters", status_code=201, response_model=Character)
async def add_character(project_id: str, request: Request, body: Optional[Character] = None):
    return _engine(request).add_character(project_id, body)


@router.put("/projects/{project_id}/characters/{name}", response_model=Project)
async def edit_character(project_id: str, name: str, body: CharacterUpdate, request: Request):
    """Edit a character; renaming updates every sequence that refers to it."""
    return _engine(request).edit_character(project_id, name, body.model_dump(exclude_unset=True))


@router.delete("/projects/{project_id}/characters/{name}", response_model=Project)
async def delete_character(project_id: str, name: str, request: Request):
    return _engine(request).delete_character(project_id, name)


@router.put("/projects/{project_id}/characters/{name}/reference", response_model=Project)
async def set_reference_image(project_id: str, name: str, body: ReferenceImageRequest, request: Request):
    return _engine(request).set_reference_image(project_id, name, body.image)


@router.post("/projects/{project_id}/characters/{name}/regenerate", response_model=MediaResponse)
async def regenerate_character(project_id: str, name: str, request: Request):
    url = await _engine(request).regenerate_single_character(project_id, name)
    return MediaResponse(project_id=project_id, url=url)


# ============================================================================
# Sequences
# ============================================================================

@router.post("/projects/{project_id}/sequences", status_code=201, response_model=Sequence)
async def add_sequence(project_id: str, request: Request, body: Optional[Sequence] = None):
    return _engine(request).add_sequence(project_id, body)


@router.put("/projects/{project_id}/sequences/{sequence_id}", response_model=Project)
async def edit_sequence(project_id: str, sequence_id: str, body: SequenceUpdate, request: Request):
    return _engine(request).edit_sequence(
        project_id, sequence_id, body.model_dump(exclude_unset=True)
    )


@router.delete("/projects/{project_id}/sequences/{sequence_id}", response_model=Project)
async def delete_sequence(project_id: str, sequence_id: str, request: Request):
    return _engine(request).delete_sequence(project_id, sequence_id)


@router.post("/projects/{project_id}/sequences/{sequence_id}/characters", response_model=Project)
async def toggle_sequence_character(
    project_id: str, sequence_id: str, body: ToggleCharacterRequest, request: Request
):
    return _engine(request).toggle_sequence_character(project_id, sequence_id, body.name)


@router.post("/projects/{project_id}/sequences/{sequence_id}/regenerate", response_model=MediaResponse)
async def regenerate_storyboard(project_id: str, sequence_id: str, request: Request):
    url = await _engine(request).regenerate_single_sequence(project_id, sequence_id)
    return MediaResponse(project_id=project_id, url=url)


@router.post(
    "/projects/{project_id}/sequences/{sequence_id}/regenerate-video",
    response_model=MediaResponse,
)
async def regenerate_video(project_id: str, sequence_id: str, request: Request):
    url = await _engine(request).regenerate_single_video(project_id, sequence_id)
    return MediaResponse(project_id=project_id, url=url)
