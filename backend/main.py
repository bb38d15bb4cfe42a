from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from azure.cosmos import CosmosClient
from azure.cosmos.cosmos_client import ConnectionPolicy
from azure.identity import DefaultAzureCredential
import os
import logging
import time
from contextlib import asynccontextmanager

from constants import (
    BOOTSTRAP_TEACHER_EMAIL, BOOTSTRAP_TEACHER_NAME, BOOTSTRAP_TEACHER_PASSWORD, CONTAINER,
    CORS_ORIGINS, COSMOS_DB_CONSISTENCY_LEVEL, COSMOS_DB_ENDPOINT, COSMOS_DB_KEY, DATABASE_NAME, LOG_LEVEL,
)
from datetime_utils import now_portal_iso
from database import database_client_from
from error_utils import PortalError, portal_error_handler
from routers import submissions, tests, users

# Configure logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

def create_optimized_cosmos_client(endpoint: str) -> CosmosClient:
    """Create Cosmos DB client with performance optimizations"""
    connection_policy = ConnectionPolicy()
    connection_policy.request_timeout = 30

    # Configure preferred locations for multi-region accounts
    preferred_locations = os.getenv("COSMOS_DB_PREFERRED_LOCATIONS", "").split(",")
    if preferred_locations and preferred_locations[0]:
        connection_policy.preferred_locations = [loc.strip() for loc in preferred_locations]

    connection_policy.retry_options.max_retry_attempt_count = 3
    connection_policy.retry_options.fixed_retry_interval_in_milliseconds = 1000
    connection_policy.retry_options.max_wait_time_in_seconds = 10

    # Account key when configured, otherwise managed identity / az login
    credential = COSMOS_DB_KEY or DefaultAzureCredential()

    return CosmosClient(
        url=endpoint,
        credential=credential,
        connection_policy=connection_policy,
        consistency_level=COSMOS_DB_CONSISTENCY_LEVEL,
    )


async def bootstrap_teacher(db_service) -> None:
    """Create the configured first teacher account if no user has its email yet"""
    if not (BOOTSTRAP_TEACHER_EMAIL and BOOTSTRAP_TEACHER_PASSWORD):
        return

    from models import Teacher
    from security import hash_password

    if await db_service.find_one(CONTAINER["USERS"], {"email": BOOTSTRAP_TEACHER_EMAIL}) is not None:
        return
    teacher = Teacher(
        name=BOOTSTRAP_TEACHER_NAME,
        email=BOOTSTRAP_TEACHER_EMAIL,
        password_hash=hash_password(BOOTSTRAP_TEACHER_PASSWORD),
    )
    await db_service.create_item(CONTAINER["USERS"], teacher.to_document())
    logger.info(f"Created bootstrap teacher account {BOOTSTRAP_TEACHER_EMAIL}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup; the database handle lives on app.state for get_cosmosdb
    cosmos_client = None
    database_client = None

    try:
        if COSMOS_DB_ENDPOINT:
            cosmos_client = create_optimized_cosmos_client(COSMOS_DB_ENDPOINT)
            database_client = cosmos_client.get_database_client(DATABASE_NAME)

            from database import get_cosmosdb_service
            db_service = await get_cosmosdb_service(database_client)
            await bootstrap_teacher(db_service)

            logger.info(f"Connected to Cosmos DB: {DATABASE_NAME}")
        else:
            logger.warning("COSMOS_DB_ENDPOINT not provided, running in development mode without database")

    except Exception as e:
        logger.error(f"Cosmos DB connection failed: {e}")
        logger.warning("Running in development mode without database")
        cosmos_client = None
        database_client = None

    app.state.database_client = database_client
    yield

    # Shutdown
    app.state.database_client = None
    if cosmos_client:
        logger.info("Cosmos DB connection closed")


app = FastAPI(
    title="MCQ Exam Portal",
    description="Backend API for scheduling, taking and grading multiple-choice tests",
    version="1.0.0",
    lifespan=lifespan
)

app.add_exception_handler(PortalError, portal_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with their status and processing time"""
    start_time = time.time()
    logger.info(f"Request: {request.method} {request.url}")

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(f"Response: {response.status_code} in {process_time:.4f}s")

    return response


@app.get("/")
async def root():
    return {"message": "MCQ Exam Portal API", "version": "1.0.0"}


@app.get("/health")
async def health_check(request: Request):
    database_client = database_client_from(request)
    return {"status": "healthy", "database": "connected" if database_client else "disconnected"}


@app.get("/metrics")
async def get_metrics(request: Request):
    """Get Cosmos DB performance metrics"""
    database_client = database_client_from(request)
    if database_client is None:
        raise HTTPException(status_code=503, detail="Database not available")

    try:
        from database import CosmosDBService

        db_service = CosmosDBService(database_client)
        container_stats = {}
        for container_name in CONTAINER.values():
            try:
                container_stats[container_name] = await db_service.get_container_statistics(container_name)
            except Exception as e:
                container_stats[container_name] = {"error": str(e)}

        return {
            "service_metrics": db_service.get_metrics(),
            "container_statistics": container_stats,
            "timestamp": now_portal_iso(),
        }

    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get metrics: {str(e)}")


@app.get("/metrics/reset")
async def reset_metrics(request: Request):
    """Reset performance metrics (for testing/monitoring)"""
    if database_client_from(request) is None:
        raise HTTPException(status_code=503, detail="Database not available")

    from database import cosmos_metrics
    cosmos_metrics.reset()
    return {"message": "Metrics reset successfully"}


# Include routers
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(tests.router, prefix="/api/tests", tags=["tests"])
app.include_router(submissions.router, prefix="/api/submissions", tags=["submissions"])


def main():
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
