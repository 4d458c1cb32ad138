"""
Dividee Backend API

A FastAPI backend for sharing subscription costs within groups.
This module sets up the app and mounts routers - all endpoint logic is in routers/.
"""

import os
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import models
from database import engine

# Import routers
from routers import (
    auth, groups, members, subscriptions, subscription_members, access_requests,
    notifications, payments, dashboard, expenses, audit
)


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

# Comma separated list of allowed frontend origins
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if origin.strip()
]

# Create database tables
models.Base.metadata.create_all(bind=engine)

# Initialize FastAPI app
app = FastAPI(
    title="Dividee API",
    description="API for sharing subscription costs, access requests and notifications",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router)
app.include_router(groups.router)
app.include_router(members.router)
app.include_router(subscriptions.router)
app.include_router(subscription_members.router)
app.include_router(access_requests.router)
app.include_router(notifications.router)
app.include_router(payments.router)
app.include_router(dashboard.router)
app.include_router(expenses.router)
app.include_router(audit.router)
