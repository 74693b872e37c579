from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from coderunner.core.config import get_settings
from coderunner.core.logging import setup_logging
from coderunner.api.routers import run as r_run
from coderunner.api.routers import ws as r_ws
from coderunner.api.routers import tutor as r_tutor

settings = get_settings()
setup_logging(settings.LOG_LEVEL)

app = FastAPI(title=settings.APP_NAME)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(r_run.router, prefix=settings.API_PREFIX)
app.include_router(r_ws.router, prefix=settings.API_PREFIX)
app.include_router(r_tutor.router, prefix=settings.API_PREFIX)


@app.get(f"{settings.API_PREFIX}/health")
async def health():
    return {"ok": True}
