import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager
from crackzone.config import LOG_LEVEL
from crackzone.database import create_db_and_tables
from crackzone.routers import auth, notifications, teams

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup: Create database tables
    create_db_and_tables()
    yield


# Initialize FastAPI app
app = FastAPI(
    title="CrackZone Teams API",
    description="Team membership, join requests and invitations for CrackZone tournaments",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(auth.router)
app.include_router(teams.router)
app.include_router(notifications.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
