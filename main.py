import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.api.routers import api_router

description = """
The **ContentManager API** stores the collections and documents of your site as
files in a GitHub repository. Every change becomes a single commit on the
configured branch.

If the branch moved on while you were editing, a commit is answered with
**409 Conflict**. Fetch the head again and retry.
"""

logging.basicConfig(
    filename="backend.log",
    filemode="a",
    format="%(asctime)s-%(levelname)s-%(message)s",
    datefmt="%d-%b-%y %H:%M:%S",
    level=logging.DEBUG,
)

app = FastAPI(
    title="ContentManager API",
    summary="ContentManager API lets you manage the content of your site stored in a GitHub repository",
    docs_url="/contentmanager/api/v1/docs",
    openapi_url="/contentmanager/api/v1/openapi.json",
    version="0.1.0",
    description=description,
)

# clear the current log
with open("log.json", "w") as log:
    log.write("[]")

load_dotenv()

# valid frontend url origins
origins = os.environ.get(
    "CORS_ORIGINS", "http://localhost:3000,https://localhost:3000"
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    exc_str = f"{exc}".replace("\n", " ").replace("   ", " ")
    logging.error(f"{exc}")
    content = {
        "status_code": 422,
        "detail": f"Request is not valid! ERROR: {exc_str}",
    }
    return JSONResponse(
        content=content, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY
    )
