"""
api.py
HTTP endpoints for the payment gateway webhook and the monthly billing cron.
Run: uvicorn api:app --port 8000
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse

import db
import gateway
import ledger
from config import Config, get_billing_settings, get_config, setup_logging
from errors import GatewayError, PortalError, ValidationError

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging()
    db.create_tables()
    yield


app = FastAPI(title="Committee Dues Portal API", lifespan=lifespan)


@app.post("/api/razorpay-webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    config: Config = Depends(get_config),
):
    """
    Handle Razorpay webhooks. Only payment_link.paid changes anything; a
    redelivered payment is acknowledged without being applied twice.
    """
    logger.info("Razorpay webhook received")
    body = await request.body()
    try:
        gateway.handle_webhook(body, x_razorpay_signature, config)
    except ValidationError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    except GatewayError as exc:
        logger.error("Webhook rejected: %s", exc)
        return JSONResponse({"error": str(exc)}, status_code=500)
    except (PortalError, sqlite3.Error):
        logger.exception("Error processing Razorpay webhook")
        return JSONResponse({"error": "Webhook processing failed"}, status_code=500)
    return {"status": "ok"}


@app.get("/api/cron/monthly-billing")
def monthly_billing(
    authorization: Optional[str] = Header(None),
    config: Config = Depends(get_config),
):
    if not config.cron_secret or authorization != f"Bearer {config.cron_secret}":
        return JSONResponse({"success": False, "error": "Unauthorized"}, status_code=401)

    logger.info("Cron: starting monthly billing")
    result = ledger.run_action(
        ledger.run_monthly_billing,
        get_billing_settings(),
        message=lambda count: f"Successfully billed {count} members.",
    )
    if not result.success:
        return JSONResponse({"success": False, "error": result.message}, status_code=500)
    return {"success": True, "message": result.message}
