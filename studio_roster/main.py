from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request

from studio_roster.config import settings
from studio_roster.db import Base, SessionLocal, engine
from studio_roster.metrics import flush_roster_metrics
from studio_roster.route_logging import EndpointNameRoute
from studio_roster.routers import attendance, courses, enrollments, instances, students, sync_failures, temp_students, templates
from studio_roster.scheduler import start_scheduler, stop_scheduler
from studio_roster.services.bootstrap_service import run_bootstrap

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        run_bootstrap(db)
    finally:
        db.close()
    if settings.enable_scheduler:
        start_scheduler()
    yield
    if settings.enable_scheduler:
        stop_scheduler()
    flush_roster_metrics()


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('studio_roster.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response


app.include_router(templates.router)
app.include_router(courses.router)
app.include_router(students.router)
app.include_router(enrollments.router)
app.include_router(instances.router)
app.include_router(attendance.router)
app.include_router(temp_students.router)
app.include_router(sync_failures.router)


@app.get('/health')
def health():
    return {'status': 'ok', 'app': settings.app_name, 'env': settings.app_env}
