from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from image_redirect.errors import ImageApiError
from image_redirect.routes import health, images
from image_redirect.utils.logging_utils import setup_logger_fastapi
from image_redirect.utils.sentry import init_sentry

init_sentry()
app = FastAPI(title="image-redirect")
setup_logger_fastapi(app)


@app.exception_handler(ImageApiError)
async def image_api_exception_handler(request: Request, exc: ImageApiError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "; ".join(messages)},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": str(exc)},
    )


app.include_router(health.router)
app.include_router(images.router)
# Docker clients prefix every call with the API version they negotiated
app.include_router(images.router, prefix="/v{version}")
app.include_router(health.router, prefix="/v{version}", include_in_schema=False)
