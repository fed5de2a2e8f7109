#!/usr/bin/env python3

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from kitroom.routes import api
from kitroom.configs import OPTIONS, CORS_ORIGINS, LOG_LEVEL
from kitroom import __version__ as VERSION

logging.basicConfig(level=LOG_LEVEL.upper())

app = FastAPI(
    title="Kitroom API",
    description="Kitroom: equipment lending administration for teaching labs",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api.router, prefix="/v1/api")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("kitroom.app:app", **OPTIONS)
