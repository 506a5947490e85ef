# pdv/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pdv.logconfig import configure_logging
from pdv.middleware import RequestIdMiddleware
from pdv.db import Base, engine
from pdv.errors import OrderError
import pdv.models  # noqa: F401  (registers every table on Base.metadata)

from pdv.routers import auth, admin, menu, delivery, customers, cart, orders, dining, kiosk, cash, couriers
from pdv.routers import settings as settings_router

configure_logging()
logger = logging.getLogger("pdv.main")

app = FastAPI(title="PDV API", version="0.4.0")

@app.on_event("startup")
def init_db():
    Base.metadata.create_all(bind=engine)

@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError):
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(settings_router.router)
app.include_router(menu.router)
app.include_router(delivery.router)
app.include_router(customers.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(dining.router)
app.include_router(kiosk.router)
app.include_router(cash.router)
app.include_router(couriers.router)

@app.get("/healthz")
def healthz():
    return {"ok": True}
