import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from bitmor_dca.api import authorizations, health, plans
from bitmor_dca.core.config import settings, validate_config
from bitmor_dca.core.database import create_all_tables, is_database_configured
from bitmor_dca.core.errors import AppError, app_error_handler, http_error_handler, unhandled_exception_handler
from bitmor_dca.core.logging import configure_logging
from bitmor_dca.core.middleware.request_id import RequestIdMiddleware

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("bitmor_dca")
    logger.info("Starting Bitmor DCA service...")
    if is_database_configured():
        create_all_tables()
    try:
        yield
    finally:
        logging.getLogger("bitmor_dca").info("Stopping Bitmor DCA service...")


app = FastAPI(title="Bitmor DCA", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(health.router)
app.include_router(authorizations.router, tags=["authorizations"])
app.include_router(plans.router, tags=["plans"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
