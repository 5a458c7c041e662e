import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .error_handlers import register_exception_handlers
from .routers import auth, clients, collections, control, invoices, receivables, sellers

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if origin.strip()
]

app = FastAPI(title="Receivables API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth.router)
app.include_router(control.router)
app.include_router(clients.router)
app.include_router(sellers.router)
app.include_router(invoices.router)
app.include_router(collections.router)
app.include_router(receivables.router)


@app.get("/")
def root():
    return {"status": "ok"}
