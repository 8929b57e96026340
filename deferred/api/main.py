"""FastAPI application for inspecting and operating the job queue."""

from dotenv import load_dotenv
from fastapi import FastAPI

from deferred.api.routers import jobs, workers

load_dotenv()

app = FastAPI(title="deferred")

app.include_router(jobs.router, prefix="/api/v1")
app.include_router(workers.router, prefix="/api/v1")
