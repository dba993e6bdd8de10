import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from libreserve.api import admin, basket, reservations, routes
from libreserve.core.clock import utcnow
from libreserve.core.config import configure_logging, settings
from libreserve.core.database import Base, SessionLocal, engine
from libreserve.core.errors import ReservationError
from libreserve.services.sweep import sweep_expired

configure_logging()
logger = logging.getLogger("libreserve")


def run_sweep_once():
    db = SessionLocal()
    try:
        return sweep_expired(db)
    finally:
        db.close()


async def _sweep_forever(interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(run_sweep_once)
        except Exception:
            logger.exception("Expiry sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Creating database tables (if not present)...")
    Base.metadata.create_all(bind=engine)
    task = None
    if settings.sweep_interval > 0:
        task = asyncio.create_task(_sweep_forever(settings.sweep_interval))
    try:
        yield
    finally:
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


app = FastAPI(title="Library Reservation Service", lifespan=lifespan)
app.include_router(routes.router)
app.include_router(basket.router)
app.include_router(reservations.router)
app.include_router(admin.router)


@app.exception_handler(ReservationError)
async def reservation_error_handler(request: Request, exc: ReservationError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    return JSONResponse(status_code=int(exc.status_code), content=jsonable_encoder(exc.to_dict()))


@app.get("/health")
def health():
    return {"status": "ok", "time": utcnow().isoformat()}
