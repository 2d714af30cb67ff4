# exam_engine/main.py
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from exam_engine.api.v1.endpoints import exams, health, submissions
from exam_engine.core.config import settings
from exam_engine.core.errors import ExamEngineError
from exam_engine.core.logging_config import configure_logging
from exam_engine.db.init_db import init_db

configure_logging()

app = FastAPI(title=settings.PROJECT_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    init_db()


@app.exception_handler(ExamEngineError)
async def exam_engine_error_handler(request: Request, exc: ExamEngineError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


def _without_inputs(errors):
    # raw inputs are not echoed back; they may not even be valid JSON (NaN)
    return [{key: value for key, value in err.items() if key != "input"} for err in errors]


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "validation", "detail": jsonable_encoder(_without_inputs(exc.errors()))},
    )


app.include_router(health.router, prefix="/api/v1")
app.include_router(exams.router, prefix="/api/v1")
app.include_router(submissions.router, prefix="/api/v1")
