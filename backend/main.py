"""FamilyTree AI - genealogy editor backend.

FastAPI server that owns the family tree graph, keeps relationships consistent
on every edit, exports/imports GEDCOM, and uses the GitHub Copilot SDK for
AI-assisted person entry and biographies.
"""

import logging
from contextlib import asynccontextmanager

import config

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("familytree")

from fastapi import FastAPI, HTTPException, UploadFile, File
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

from copilot import CopilotClient
from ai_assist import AIServiceError, extract_person, generate_biography
from gedcom_codec import GedcomDecodeError, decode_gedcom, encode_gedcom
from models import Person, PersonDraft, TreeData
from relationships import person_validation_errors
from session import SessionManager
from storage import SqlitePersonStorage, StorageError
from tree_store import FamilyTreeStore

# Global state
copilot_client: CopilotClient | None = None
session_manager = SessionManager(
    lambda user: SqlitePersonStorage(config.DB_PATH),
    retry_attempts=config.PERSIST_RETRY_ATTEMPTS,
    retry_backoff=config.PERSIST_RETRY_BACKOFF,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - start and stop Copilot client."""
    global copilot_client

    # Startup - Connect to external Copilot CLI server
    logger.info("Initializing Copilot client...")
    try:
        client = CopilotClient({
            "cli_url": config.COPILOT_CLI_URL,
            "log_level": "info",
        })
        await client.start()
        copilot_client = client
        logger.info(f"Copilot client started and connected to {config.COPILOT_CLI_URL}")
    except Exception as e:
        # The editor works without AI; smart-add and biographies answer 503
        logger.warning(f"Copilot client unavailable, AI features disabled: {e}")
        copilot_client = None

    yield

    # Shutdown
    await session_manager.logout()
    if copilot_client:
        logger.info("Shutting down Copilot client...")
        await copilot_client.stop()
        logger.info("Copilot client stopped")


# Create FastAPI app
app = FastAPI(
    title="FamilyTree AI",
    description="Family tree editor with GEDCOM export and AI-assisted entry",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response models
class LoginRequest(BaseModel):
    """Mock login request."""
    name: str
    email: str


class SmartAddRequest(BaseModel):
    """Free text describing a person."""
    text: str


class BiographyResponse(BaseModel):
    biography: str


class GedcomImportResponse(BaseModel):
    """Response after importing a GEDCOM file."""
    message: str
    individual_count: int
    warnings: list[str]


def _require_store() -> FamilyTreeStore:
    session = session_manager.current
    if session is None:
        logger.warning("Request made without an active session")
        raise HTTPException(status_code=401, detail="Not logged in. Log in first.")
    return session.store


def _require_ai():
    if copilot_client is None:
        logger.error("Copilot client not initialized")
        raise HTTPException(status_code=503, detail="AI service not available")
    return copilot_client


# Endpoints

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    logger.debug("Health check requested")
    return {
        "status": "healthy",
        "logged_in": session_manager.current is not None,
        "copilot_connected": copilot_client is not None,
    }


@app.post("/session/login")
async def login(request: LoginRequest):
    """Start a session and load (or seed) the family tree."""
    logger.info(f"Login requested for {request.email}")
    try:
        session = await session_manager.login(request.name, request.email)
    except StorageError as e:
        logger.error(f"Failed to load family tree: {e}")
        raise HTTPException(status_code=503, detail=f"Failed to load family tree: {e}")

    user = session.user
    return {
        "user": {"id": user.id, "name": user.name, "email": user.email, "photoUrl": user.photo_url},
        "individual_count": len(session.store.tree.people),
    }


@app.post("/session/logout")
async def logout():
    """End the session and drop the cached tree."""
    await session_manager.logout()
    return {"message": "Logged out"}


@app.get("/tree", response_model=TreeData)
async def get_tree():
    """Get the whole family tree."""
    store = _require_store()
    tree = store.tree
    logger.info(f"Returning tree with {len(tree.people)} people")
    return tree


@app.get("/people/{person_id}", response_model=Person)
async def get_person(person_id: str):
    """Get one person."""
    store = _require_store()
    person = store.get_person(person_id)
    if person is None:
        logger.warning(f"Person {person_id} not found")
        raise HTTPException(status_code=404, detail=f"Person with ID {person_id} not found")
    return person


@app.post("/people", response_model=Person, status_code=201)
async def create_person(draft: PersonDraft):
    """Manually add a new person."""
    store = _require_store()
    try:
        return await store.add_person(draft.model_dump(exclude_none=True))
    except StorageError as e:
        raise HTTPException(status_code=503, detail=f"Failed to save person: {e}")


@app.put("/people/{person_id}", response_model=TreeData)
async def save_person(person_id: str, person: Person):
    """Save an edited (or new) person and update relatives' links."""
    store = _require_store()

    if person.id != person_id:
        raise HTTPException(status_code=422, detail=f"Person id {person.id} does not match URL id {person_id}")
    errors = person_validation_errors(person)
    if errors:
        logger.info(f"Rejected save of {person_id}: {errors}")
        raise HTTPException(status_code=422, detail=errors)

    try:
        return await store.save_person(person)
    except StorageError as e:
        raise HTTPException(status_code=503, detail=f"Failed to save person: {e}")


@app.post("/smart-add", response_model=Person, status_code=201)
async def smart_add(request: SmartAddRequest):
    """Create a person from free text using AI extraction."""
    store = _require_store()
    client = _require_ai()

    try:
        extracted = await extract_person(
            client, request.text, model=config.COPILOT_MODEL, timeout=config.AI_TIMEOUT_SECONDS
        )
    except AIServiceError as e:
        logger.error(f"Smart add failed: {e}")
        raise HTTPException(status_code=502, detail="Error connecting to AI service.")

    if extracted is None:
        raise HTTPException(status_code=422, detail="Could not extract person details from the text.")

    try:
        return await store.add_person(extracted.model_dump(exclude_none=True))
    except StorageError as e:
        raise HTTPException(status_code=503, detail=f"Failed to save person: {e}")


@app.post("/people/{person_id}/biography", response_model=BiographyResponse)
async def biography(person_id: str):
    """Generate a biography for a person (not saved until the person is saved)."""
    store = _require_store()
    person = store.get_person(person_id)
    if person is None:
        raise HTTPException(status_code=404, detail=f"Person with ID {person_id} not found")
    client = _require_ai()

    try:
        text = await generate_biography(
            client, person, model=config.COPILOT_MODEL, timeout=config.AI_TIMEOUT_SECONDS
        )
    except AIServiceError as e:
        logger.error(f"Biography generation failed: {e}")
        raise HTTPException(status_code=502, detail="Error connecting to AI service.")
    return BiographyResponse(biography=text)


@app.get("/export-gedcom")
async def export_gedcom():
    """Download the tree as a GEDCOM 5.5.1 file."""
    store = _require_store()
    content = encode_gedcom(store.tree)
    return Response(
        content=content,
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="family_tree.ged"'},
    )


@app.post("/import-gedcom", response_model=GedcomImportResponse)
async def import_gedcom(file: UploadFile = File(...)):
    """Upload a GEDCOM file, replacing the current tree."""
    store = _require_store()

    logger.info(f"Received GEDCOM file upload: {file.filename}")

    if not file.filename or not file.filename.lower().endswith(('.ged', '.gedcom')):
        logger.warning(f"Invalid file type: {file.filename}")
        raise HTTPException(status_code=400, detail="File must be a GEDCOM file (.ged or .gedcom)")

    content = await file.read()
    logger.debug(f"Read {len(content)} bytes from file")
    try:
        content_str = content.decode('utf-8')
    except UnicodeDecodeError:
        logger.info("UTF-8 decode failed, trying latin-1 encoding")
        content_str = content.decode('latin-1')

    try:
        result = decode_gedcom(content_str)
    except GedcomDecodeError as e:
        logger.error(f"Failed to parse GEDCOM file: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    try:
        await store.replace_tree(result.tree)
    except StorageError as e:
        raise HTTPException(status_code=503, detail=f"Failed to save imported tree: {e}")

    count = len(result.tree.people)
    logger.info(f"Imported GEDCOM file with {count} individuals")
    return GedcomImportResponse(
        message=f"Successfully imported GEDCOM file: {file.filename}",
        individual_count=count,
        warnings=result.warnings,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
