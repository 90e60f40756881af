# Run from project root: uvicorn app.main:app --reload

import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from app.api.handlers import app_error_handler, unhandled_error_handler, validation_error_handler
from app.api.routes import router
from app.core.errors import AppError

logging.basicConfig(level=logging.INFO)


app = FastAPI(title="Agentic Bot Backend")
app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)
app.add_exception_handler(Exception, unhandled_error_handler)
app.include_router(router)
