"""
Exam Session API: Main Application
FastAPI application for the exam session engine.
Study and test sessions, scoring, weak-area analysis and study plans.
"""

from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy import text
from sqlalchemy.orm import Session
import logging
import os

from database.database import engine, Base, get_db
from database import models  # noqa: F401  (registers tables on Base.metadata)
from session_engine.errors import SessionEngineError, SessionExpiredError
from session_engine.payloads import result_payload

from routers import sessions, analytics

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s  %(levelname)s  %(name)s  %(message)s",
)
log = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: create tables."""
    Base.metadata.create_all(bind=engine)
    log.info("Exam session API started")
    yield


app = FastAPI(
    title="Exam Session API",
    description="Study and test sessions, scoring, and performance analytics for certification exams",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SessionEngineError)
async def session_engine_error_handler(request: Request, exc: SessionEngineError):
    body = {"success": False, "error": {"type": exc.error_type, "message": exc.message}}
    if isinstance(exc, SessionExpiredError):
        body["data"] = result_payload(exc.result)
    elif exc.data is not None:
        body["data"] = exc.data
    return JSONResponse(status_code=exc.status_code, content=body)


# ─── Routers ───────────────────────────────────────────────────────────────────

app.include_router(sessions.router)           # /sessions/*
app.include_router(analytics.router)          # /analytics/*


@app.get("/")
def root():
    return {
        "name": "Exam Session API",
        "version": "1.0.0",
        "endpoints": {
            "docs": "/docs",
            "sessions": "/sessions",
            "analytics": "/analytics",
        },
    }


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "exam-session-api"}


@app.get("/health/database")
def database_health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "healthy", "database": engine.dialect.name}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8002")))
