"""Paintbar API: storage of paint projects and their images."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from paintbar.api.projects import app_projects
from paintbar.connections import close_paintbar_connections, start_paintbar_connections
from paintbar.errors import NotFoundError, StorageError, TitleTaken, Unauthorized
from paintbar.systemdata.manage import create_or_update_indices


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.info("Initializing indices...")
    await start_paintbar_connections()
    await create_or_update_indices()

    yield
    await close_paintbar_connections()


app = FastAPI(
    title="Paintbar",
    description=__doc__ if __doc__ else "",
    openapi_tags=[
        dict(name="projects", description="Endpoints to create, list, modify and delete projects and their images"),
    ],
    lifespan=lifespan,
)
app.include_router(app_projects)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.exception_handler(ValueError)
async def value_error_exception_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"message": str(exc)})


@app.exception_handler(Unauthorized)
async def unauthorized_exception_handler(request: Request, exc: Unauthorized):
    return JSONResponse(status_code=403, content={"message": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_exception_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"message": str(exc)})


@app.exception_handler(TitleTaken)
async def title_taken_exception_handler(request: Request, exc: TitleTaken):
    return JSONResponse(status_code=409, content={"message": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_exception_handler(request: Request, exc: StorageError):
    logging.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"message": str(exc)})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc) -> JSONResponse:
    return JSONResponse(
        status_code=422, content={"message": "There was an issue with the data you sent.", "fields_invalid": exc.errors()}
    )
