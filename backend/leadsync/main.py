from fastapi import FastAPI
from .api.routes import api_router
from .api.jobs import get_settings
from .config import setup_logging

# Loads .env (if present) and configures logging once for the app
setup_logging(get_settings().log_level)

app = FastAPI(title="LeadSync")

app.include_router(api_router, prefix="/api")

@app.get("/")
async def root():
    return {"status": "ok"}
