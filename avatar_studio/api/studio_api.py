"""
FastAPI application for Avatar Studio

Exposes wizard sessions, profiles, knowledge documents and a websocket
stream of profile changes over the shared studio services.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import FastAPI, File, HTTPException, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles

from .models import (
    CreateSessionRequest,
    ErrorResponse,
    ExitRequest,
    ExitResponse,
    FieldsUpdateRequest,
    HealthResponse,
    ImageRemoveRequest,
    KnowledgeListResponse,
    LanguageRequest,
    ProfileListResponse,
    SaveResponse,
    TagRequest,
)
from ..config.settings import Settings
from ..core.knowledge_ledger import KnowledgeLedger
from ..core.studio import StudioServices
from ..core.wizard_controller import WizardController
from ..data.models.attachments import KnowledgeDocument, UploadedFile
from ..data.models.avatar_profile import AvatarProfile, ProfileChange
from ..data.models.wizard_state import WizardState
from ..utils.errors import NotAvailable, PersistenceFailure, StudioError, UploadRejected, ValidationError
from ..utils.logging import configure_logging, get_logger


def error_status(error: StudioError) -> int:
    """HTTP status code for a studio error"""
    if isinstance(error, ValidationError):
        return 422
    if isinstance(error, UploadRejected):
        if error.reason == "size":
            return 413
        if error.reason == "content_type":
            return 415
        return 422
    if isinstance(error, NotAvailable):
        return 404
    if isinstance(error, PersistenceFailure):
        return 503
    return 400


def error_body(error: StudioError) -> ErrorResponse:
    return ErrorResponse(
        detail=str(error),
        error=type(error).__name__,
        issues=getattr(error, "issues", {}),
        step=getattr(error, "step", None),
        reason=getattr(error, "reason", None)
    )


async def read_upload(file: UploadFile) -> UploadedFile:
    data = await file.read()
    return UploadedFile(
        filename=file.filename or "upload",
        content_type=file.content_type or "application/octet-stream",
        data=data
    )


def initialize_app(settings: Optional[Settings] = None, services: Optional[StudioServices] = None) -> FastAPI:
    """Initialize FastAPI app with studio services"""
    settings = settings or (services.settings if services else Settings.from_default_config())
    configure_logging(settings)
    logger = get_logger(__name__)

    services = services or StudioServices(settings)
    sessions: Dict[str, WizardController] = {}

    app = FastAPI(
        title=settings.api.title,
        version=settings.api.version,
        description="Avatar authoring wizard and knowledge document management",
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.services = services
    app.state.sessions = sessions

    if settings.api.cors.enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.api.cors.allow_origins,
            allow_methods=settings.api.cors.allow_methods,
            allow_headers=settings.api.cors.allow_headers,
        )

    app.mount("/files", StaticFiles(directory=settings.get_blob_root(), check_dir=False), name="files")

    @app.exception_handler(StudioError)
    async def studio_error_handler(request: Request, exc: StudioError):
        status_code = error_status(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc}")
        return JSONResponse(status_code=status_code, content=error_body(exc).model_dump())

    @app.on_event("startup")
    async def startup_event():
        logger.info(f"Avatar Studio API starting, storage at {settings.base_storage_dir}")
        logger.info(f"API available at: http://{settings.api.host}:{settings.api.port}")

    @app.on_event("shutdown")
    async def shutdown_event():
        for wizard in sessions.values():
            wizard.detach()
        sessions.clear()
        services.close()
        logger.info("Shutdown complete")

    def get_session(session_id: str) -> WizardController:
        wizard = sessions.get(session_id)
        if wizard is None:
            raise HTTPException(status_code=404, detail=f"Wizard session '{session_id}' not found")
        return wizard

    async def profile_ledger(profile_id: str) -> KnowledgeLedger:
        return await services.ledger_for(profile_id)

    # Wizard sessions

    @app.post("/api/v1/wizard/sessions", response_model=WizardState, status_code=201)
    async def create_session(request: CreateSessionRequest):
        """Start a wizard session, in edit mode when a profile id is given"""
        if request.profile_id:
            wizard = await services.open_wizard(request.profile_id, restore_draft=request.restore_draft)
        else:
            wizard = services.new_wizard(
                request.owner_id,
                restore_draft=request.restore_draft,
                resume_session_id=request.resume_session_id
            )
        await wizard.attach(services.feed)
        sessions[wizard.session_id] = wizard
        logger.info(f"Started {wizard.mode.value} session {wizard.session_id}")
        return wizard.state()

    @app.get("/api/v1/wizard/sessions/{session_id}", response_model=WizardState)
    async def get_session_state(session_id: str):
        return get_session(session_id).state()

    @app.patch("/api/v1/wizard/sessions/{session_id}/fields", response_model=WizardState)
    async def update_session_fields(session_id: str, request: FieldsUpdateRequest):
        wizard = get_session(session_id)
        wizard.update_fields(**request.fields)
        return wizard.state()

    @app.post("/api/v1/wizard/sessions/{session_id}/tags", response_model=WizardState)
    async def add_tag(session_id: str, request: TagRequest):
        wizard = get_session(session_id)
        wizard.add_persona_tag(request.tag)
        return wizard.state()

    @app.delete("/api/v1/wizard/sessions/{session_id}/tags/{tag}", response_model=WizardState)
    async def remove_tag(session_id: str, tag: str):
        wizard = get_session(session_id)
        wizard.remove_persona_tag(tag)
        return wizard.state()

    @app.put("/api/v1/wizard/sessions/{session_id}/primary-language", response_model=WizardState)
    async def set_primary_language(session_id: str, request: LanguageRequest):
        wizard = get_session(session_id)
        wizard.set_primary_language(request.language)
        return wizard.state()

    @app.post("/api/v1/wizard/sessions/{session_id}/secondary-languages", response_model=WizardState)
    async def toggle_secondary_language(session_id: str, request: LanguageRequest):
        wizard = get_session(session_id)
        wizard.toggle_secondary_language(request.language)
        return wizard.state()

    @app.post("/api/v1/wizard/sessions/{session_id}/images", response_model=WizardState)
    async def add_image(session_id: str, file: UploadFile = File(...)):
        wizard = get_session(session_id)
        await wizard.add_image(await read_upload(file))
        return wizard.state()

    @app.post("/api/v1/wizard/sessions/{session_id}/images/remove", response_model=WizardState)
    async def remove_image(session_id: str, request: ImageRemoveRequest):
        wizard = get_session(session_id)
        wizard.remove_image(request.url)
        return wizard.state()

    @app.post("/api/v1/wizard/sessions/{session_id}/next", response_model=WizardState)
    async def go_next(session_id: str):
        wizard = get_session(session_id)
        wizard.go_next()
        return wizard.state()

    @app.post("/api/v1/wizard/sessions/{session_id}/back", response_model=WizardState)
    async def go_back(session_id: str):
        wizard = get_session(session_id)
        wizard.go_back()
        return wizard.state()

    @app.post("/api/v1/wizard/sessions/{session_id}/save-draft", response_model=SaveResponse)
    async def save_draft(session_id: str):
        profile_id = await get_session(session_id).save_draft()
        return SaveResponse(profile_id=profile_id)

    @app.post("/api/v1/wizard/sessions/{session_id}/finish", response_model=SaveResponse)
    async def finish(session_id: str):
        wizard = get_session(session_id)
        profile_id = await wizard.finish()
        sessions.pop(session_id, None)
        return SaveResponse(profile_id=profile_id, finished=True)

    @app.post("/api/v1/wizard/sessions/{session_id}/exit", response_model=ExitResponse)
    async def exit_session(session_id: str, request: ExitRequest):
        """Close a session; a dirty session closes only when the author discards changes"""
        wizard = get_session(session_id)
        is_dirty = wizard.is_dirty
        allowed = wizard.request_exit(lambda message: request.discard_changes)
        if allowed:
            sessions.pop(session_id, None)
        return ExitResponse(
            allowed=allowed,
            is_dirty=is_dirty,
            message=settings.wizard.unsaved_changes_message if is_dirty else None
        )

    # Wizard knowledge

    @app.post("/api/v1/wizard/sessions/{session_id}/knowledge", response_model=KnowledgeDocument,
              status_code=201)
    async def upload_session_knowledge(session_id: str, file: UploadFile = File(...)):
        wizard = get_session(session_id)
        return await wizard.upload_knowledge(await read_upload(file))

    @app.post("/api/v1/wizard/sessions/{session_id}/knowledge/{document_id}/toggle",
              response_model=KnowledgeDocument)
    async def toggle_session_knowledge(session_id: str, document_id: str):
        return await get_session(session_id).toggle_knowledge_link(document_id)

    @app.delete("/api/v1/wizard/sessions/{session_id}/knowledge/{document_id}", response_model=WizardState)
    async def delete_session_knowledge(session_id: str, document_id: str):
        wizard = get_session(session_id)
        await wizard.delete_knowledge(document_id)
        return wizard.state()

    @app.get("/api/v1/wizard/sessions/{session_id}/knowledge/{document_id}/download")
    async def download_session_knowledge(session_id: str, document_id: str):
        wizard = get_session(session_id)
        document = wizard.ledger.find(document_id)
        content = wizard.download_knowledge(document_id)
        if isinstance(content, str):
            return RedirectResponse(content, status_code=307)
        return Response(
            content=content,
            media_type=document.content_type,
            headers={"Content-Disposition": f'attachment; filename="{document.display_name}"'}
        )

    # Profiles

    @app.get("/api/v1/profiles", response_model=ProfileListResponse)
    async def list_profiles(owner_id: Optional[str] = None):
        profiles = await services.profiles.list(owner_id)
        return ProfileListResponse(profiles=profiles, count=len(profiles))

    @app.get("/api/v1/profiles/{profile_id}", response_model=AvatarProfile)
    async def get_profile(profile_id: str):
        return await services.profiles.get(profile_id)

    @app.patch("/api/v1/profiles/{profile_id}", response_model=AvatarProfile)
    async def update_profile(profile_id: str, request: FieldsUpdateRequest):
        """Edit a profile directly, as the detail view does; open wizards receive the change"""
        await services.profiles.get(profile_id)
        try:
            await services.profiles.update(profile_id, request.fields)
        except ValueError as e:
            raise ValidationError(f"Invalid profile fields: {e}") from e
        return await services.profiles.get(profile_id)

    @app.get("/api/v1/profiles/{profile_id}/knowledge", response_model=KnowledgeListResponse)
    async def list_profile_knowledge(profile_id: str):
        ledger = await profile_ledger(profile_id)
        return KnowledgeListResponse(
            profile_id=profile_id,
            documents=ledger.documents(),
            linked_count=ledger.linked_count,
            total_count=ledger.total_count
        )

    @app.post("/api/v1/profiles/{profile_id}/knowledge", response_model=KnowledgeDocument,
              status_code=201)
    async def upload_profile_knowledge(profile_id: str, file: UploadFile = File(...)):
        ledger = await profile_ledger(profile_id)
        return await ledger.upload(await read_upload(file))

    @app.post("/api/v1/profiles/{profile_id}/knowledge/{document_id}/toggle", response_model=KnowledgeDocument)
    async def toggle_profile_knowledge(profile_id: str, document_id: str):
        ledger = await profile_ledger(profile_id)
        return await ledger.toggle_link(document_id)

    @app.delete("/api/v1/profiles/{profile_id}/knowledge/{document_id}", status_code=204)
    async def delete_profile_knowledge(profile_id: str, document_id: str):
        ledger = await profile_ledger(profile_id)
        await ledger.delete(document_id)
        return Response(status_code=204)

    @app.post("/api/v1/profiles/{profile_id}/training/{action}")
    async def set_training(profile_id: str, action: str):
        """Start or stop training; knowledge edits are refused while it runs"""
        await services.profiles.get(profile_id)
        if action == "start":
            services.training.start(profile_id)
        elif action == "stop":
            services.training.stop(profile_id)
        else:
            raise HTTPException(status_code=400, detail=f"Unknown training action '{action}'. Use start or stop")
        return {"profile_id": profile_id, "training_in_progress": profile_id in services.training}

    @app.get("/api/v1/health", response_model=HealthResponse)
    async def health_check():
        return HealthResponse(
            status="healthy",
            version=settings.api.version,
            timestamp=datetime.now(timezone.utc).isoformat(),
            active_sessions=len(sessions),
            subscriptions=services.feed.subscriber_count()
        )

    # Live updates

    @app.websocket("/ws/profiles/{profile_id}")
    async def profile_changes(websocket: WebSocket, profile_id: str):
        """
        Stream changes of one profile as JSON

        The subscription is registered before the connection is accepted, so
        every change written after the handshake completes is delivered.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=settings.change_feed.websocket_queue_size)

        def enqueue(change: ProfileChange):
            try:
                queue.put_nowait(change)
            except asyncio.QueueFull:
                logger.warning(f"Websocket queue for {profile_id} is full, dropping {change.event.value}")

        subscription = await services.feed.subscribe(profile_id, enqueue)
        await websocket.accept()

        async def forward():
            while True:
                change = await queue.get()
                await websocket.send_json(change.model_dump(mode='json'))

        async def drain():
            # Client messages are ignored; receiving detects the disconnect
            while True:
                await websocket.receive_text()

        tasks = {asyncio.create_task(forward()), asyncio.create_task(drain())}
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            for task in done:
                error = task.exception()
                if error is not None and not isinstance(error, WebSocketDisconnect):
                    raise error
        finally:
            for task in tasks:
                task.cancel()
            subscription.release()
            logger.debug(f"Websocket for {profile_id} closed")

    return app
