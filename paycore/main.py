from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from paycore.api.routes import payments
from paycore.core.config import Settings, get_settings
from paycore.core.logging import configure_logging, get_logger
from paycore.db.session import create_engine, create_session_factory, init_models
from paycore.integrations.payment_gateways.exceptions import PaymentException
from paycore.schemas.common import ErrorResponse
from paycore.repositories.orders import SqlAlchemyOrderRepository
from paycore.services.payment_manager import PaymentManager


logger = get_logger(__name__)


async def payment_exception_handler(request: Request, exc: PaymentException) -> JSONResponse:
    logger.warning("payment.request.failed", path=request.url.path, **exc.to_dict())
    return JSONResponse(
        status_code=exc.http_status,
        content=ErrorResponse(error_code=exc.error_code.value, message=exc.get_user_message()).model_dump(),
    )


def create_application(
    settings: Settings | None = None,
    *,
    payment_manager: PaymentManager | None = None,
) -> FastAPI:
    """
    Build the API application.

    With an explicit payment_manager the app uses it as-is and touches no
    database; otherwise the lifespan creates the tables and builds a manager
    from settings over the SQL order repository.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        logger.info("application.startup", environment=settings.environment)
        engine = None
        if getattr(application.state, "payment_manager", None) is None:
            engine = create_engine(settings.database_url)
            await init_models(engine)
            repository = SqlAlchemyOrderRepository(create_session_factory(engine))
            application.state.payment_manager = PaymentManager.create_from_config(repository, settings)
        try:
            yield
        finally:
            if engine is not None:
                await engine.dispose()
            logger.info("application.shutdown")

    application = FastAPI(title=settings.app_name, lifespan=lifespan)
    application.state.payment_manager = payment_manager
    application.include_router(payments.router)
    application.add_exception_handler(PaymentException, payment_exception_handler)

    return application


app = create_application()
