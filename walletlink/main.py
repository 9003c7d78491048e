from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from walletlink.config import settings
from walletlink.db import Base, engine
from walletlink.errors import EventValidationError, LinkingError, StoreError, TelegramAuthConfigError
from walletlink.request_context import RequestContextFilter
from walletlink.route_logging import EndpointNameRoute
from walletlink.routers import events, linking
from walletlink.services.telegram_transport import get_telegram_transport

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s [%(request_id)s %(endpoint)s] %(message)s',
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestContextFilter())

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    application = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
    application.router.route_class = EndpointNameRoute

    @application.middleware('http')
    async def slow_request_logger(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000.0
        if duration_ms >= settings.slow_request_ms:
            logging.getLogger('walletlink.request').info(
                'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
                request.url.path,
                request.method,
                response.status_code,
                duration_ms,
            )
        return response

    @application.exception_handler(LinkingError)
    async def linking_error_handler(_: Request, exc: LinkingError):
        status_code = 503 if exc.reason.value == 'StoreError' else 400
        return JSONResponse(
            status_code=status_code,
            content={'ok': False, 'reason': exc.reason.value, 'detail': exc.detail, 'message': exc.user_message},
        )

    @application.exception_handler(StoreError)
    async def store_error_handler(_: Request, exc: StoreError):
        logger.error('store_error', extra={'detail': exc.detail})
        return JSONResponse(status_code=503, content={'ok': False, 'reason': 'StoreError', 'detail': exc.detail})

    @application.exception_handler(EventValidationError)
    async def event_validation_handler(_: Request, exc: EventValidationError):
        return JSONResponse(status_code=422, content={'ok': False, 'reason': 'ValidationError', 'errors': exc.errors})

    @application.exception_handler(TelegramAuthConfigError)
    async def auth_config_handler(_: Request, exc: TelegramAuthConfigError):
        logger.critical('telegram_auth_not_configured')
        return JSONResponse(status_code=500, content={'ok': False, 'reason': 'ConfigurationError', 'detail': str(exc)})

    application.include_router(linking.router)
    application.include_router(events.router)

    @application.get('/health')
    def healthcheck():
        return {'status': 'ok'}

    @application.get('/health/telegram')
    def telegram_health():
        healthy, details = get_telegram_transport().health_check()
        return {'healthy': healthy, 'details': details}

    return application


app = create_app()
