from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.db import Base, engine
from .core.config import get_settings
from .core.logging_config import configure_logging
from .api import broadcasts, queue, control, caller_ids, webhooks
from . import models  # noqa: F401  registers the tables on Base.metadata

settings = get_settings()
configure_logging(settings.log_level)

Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(broadcasts.router, prefix="/api/broadcasts", tags=["broadcasts"])
app.include_router(queue.router, prefix="/api/broadcasts", tags=["queue"])
app.include_router(control.router, prefix="/api/broadcasts", tags=["control"])
app.include_router(caller_ids.router, prefix="/api/caller-ids", tags=["caller-ids"])
app.include_router(webhooks.router, prefix="/api/webhooks/telephony", tags=["webhooks"])


@app.get("/health")
def health():
    return {"status": "ok"}
