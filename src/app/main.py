from fastapi import FastAPI
from config.settings import configure_logging, get_settings
from .routers import health, publish_jobs

configure_logging(get_settings().log_level)

app = FastAPI(title="Bulk Multi-Channel Publisher")

app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(publish_jobs.router, tags=["publish-jobs"])
