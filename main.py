import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import sentry_sdk
from config import BACKEND_ENVIRONMENT, SENTRY_DSN
from utils.errors import ConflictError
from utils.fastapi import HTTPJSONException

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

sentry_sdk.init(
    dsn=SENTRY_DSN,
    traces_sample_rate=0.5,
    profiles_sample_rate=0.5,
    send_default_pii=True,
    enable_tracing=True
)

# Disable Docs in Production Environment
IS_DEV = BACKEND_ENVIRONMENT == 'development'
print("Current Environment:", BACKEND_ENVIRONMENT)
if BACKEND_ENVIRONMENT == 'production':
    app = FastAPI(docs_url=None, redoc_url=None)
else:
    app = FastAPI()

@app.exception_handler(HTTPJSONException)
async def unicorn_exception_handler(request: Request, exc: HTTPJSONException):
    content = {
        "code": exc.code.value,
        "title": exc.title,
        "message": exc.message,
        "detail": exc.message,
    }
    if isinstance(exc, ConflictError):
        content["conflict_id"] = exc.conflict_id
    return JSONResponse(status_code=exc.status_code, content=content)

# Clinic Routers
from routers import appointments, sales, discounts, laboratory, orders
app.include_router(appointments.router, prefix="/api/appointments", tags=["Appointments"])
app.include_router(sales.router, prefix="/api/sales", tags=["Sales"])
app.include_router(discounts.router, prefix="/api/discounts", tags=["Discounts"])
app.include_router(laboratory.router, prefix="/api/laboratory-orders", tags=["Laboratory Orders"])
app.include_router(orders.router, prefix="/api", tags=["Orders & Quotes"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# uvicorn main:app --reload --host 0.0.0.0 --port 8000
if __name__ == '__main__':
    import uvicorn
    if IS_DEV:
        uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True, workers=1)
    else:
        uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False, workers=2)
