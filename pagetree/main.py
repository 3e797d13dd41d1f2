import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pagetree.core.config import settings
from pagetree.core.database import engine, Base
from pagetree.core.errors import PageTreeError
from pagetree.models import user, workspace, page, block, database_property  # tables
from pagetree.routers import health, auth, workspaces, pages, blocks, databases

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Init DB
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="PageTree API",
    version="0.1.0"
)

@app.exception_handler(PageTreeError)
async def pagetree_error_handler(request: Request, exc: PageTreeError):
    # erreurs métier -> {"detail", "error", "field"}
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.debug(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

# Routes
app.include_router(health.router, prefix="/health")
app.include_router(auth.router)
app.include_router(workspaces.router)
app.include_router(pages.router)
app.include_router(blocks.router)
app.include_router(databases.router)
