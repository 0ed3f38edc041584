import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clubgame.database import init_db
from clubgame.routes import games, realtime
from clubgame.utils.kdk_rules import load_kdk_ruleset

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Club Game API")

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    _cors_origins.extend(o.strip() for o in _extra.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(games.router, prefix="/api", tags=["games"])
# WebSocket channels (no prefix: /ws/...)
app.include_router(realtime.router, tags=["realtime"])


@app.on_event("startup")
def on_startup():
    init_db()
    # Pairing rules are read once and never mutated afterwards
    app.state.kdk_ruleset = load_kdk_ruleset()

    route_count = sum(1 for r in app.routes if getattr(r, "path", None))
    logger.info("Club Game API started with %d routes", route_count)


@app.get("/api/health")
def health_check():
    return {"app_name": "Club Game API", "status": "healthy"}
