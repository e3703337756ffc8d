import logging
from typing import Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .config import Settings, get_settings
from .db.session import create_schema, get_engine
from .logging_config import configure_logging
from .scheduling_routes import router as scheduling_router
from .scheduling_rules import DEFAULT_RULES, RulesEngineConfig


configure_logging()
logger = logging.getLogger(__name__)
app = FastAPI(title="Academy Scheduler", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(scheduling_router)

settings_snapshot = get_settings()
logger.info("Scheduler starting with database configured: %s", bool(settings_snapshot.database_url))

if settings_snapshot.database_url and settings_snapshot.create_schema_on_startup:
    create_schema()


if settings_snapshot.debug_endpoints:

    @app.get("/debug/rules")
    def debug_rules() -> Dict[str, object]:
        return {
            "config": RulesEngineConfig().model_dump(),
            "rules": [rule.model_dump() for rule in DEFAULT_RULES],
        }


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "default_course_type": settings.default_course_type}


@app.get("/healthz/database")
def database_health() -> Dict[str, object]:
    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Database health check failed")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"status": "ok", "dialect": engine.dialect.name}
