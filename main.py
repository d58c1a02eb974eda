from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from paylink.db.database import init_db
from paylink.utils.logger import logger
from paylink.utils.responses import fail_response
from paylink.v1.routes import payment_route


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Creating payment tables if missing")
    init_db()
    yield


app = FastAPI(
    title="Paylink API",
    description="Payment links for mobile-money payments, reconciled through Fastlipa webhooks.",
    lifespan=lifespan
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    validation_errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"]
        }
        for error in exc.errors()
    ]
    logger.warning("Validation failed for %s: %s", request.url.path, validation_errors)
    return fail_response(
        status_code=400,
        message="Validation failed",
        context={"code": "VALIDATION_FAIL", "details": validation_errors}
    )


app.include_router(payment_route.router)


@app.get("/")
async def root():
    return {
        "message": "Paylink Payment Service API",
        "version": "1.0.0",
        "endpoints": {
            "generate_link": "/payments/generate-link",
            "process": "/payments/process",
            "webhook": "/payments/webhook",
            "stats": "/payments/stats",
            "docs": "/docs"
        }
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
