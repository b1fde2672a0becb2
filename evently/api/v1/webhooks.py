"""Stripe webhook endpoint: receives, verifies and reconciles Stripe events."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from evently.billing.dependencies import get_reconciler, get_retry_on_transient, get_stripe_gateway
from evently.billing.events import classify_event
from evently.billing.exceptions import ProviderUnavailableError
from evently.billing.reconciler import SubscriptionReconciler
from evently.billing.stripe_client import StripeGateway
from evently.database import get_session_factory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    gateway: StripeGateway = Depends(get_stripe_gateway),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    retry_on_transient: bool = Depends(get_retry_on_transient),
) -> JSONResponse:
    """Receive and reconcile Stripe webhook events.

    Only a failed signature check is answered with an error (400). Once the
    event is verified the answer is ``200 {}`` whatever happens downstream,
    because a redelivery could re-apply work already done. The exception is
    a transient failure, where the transaction was rolled back in full and a
    redelivery is safe and wanted (503, unless ``webhook_retry_on_transient`` is off).
    """
    # 1. Read raw body (MUST be raw bytes for signature verification)
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    # 2. Verify signature
    try:
        event = gateway.construct_event(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e
    except ValueError as e:
        logger.warning("Invalid webhook payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e

    event_id = event["id"]
    event_type = event["type"]

    # 3. Classify
    try:
        record = classify_event(event)
    except (KeyError, TypeError, ValueError):
        logger.exception("Malformed %s payload in event %s, dropping", event_type, event_id)
        return JSONResponse({})

    if record is None:
        logger.debug("Unhandled webhook event type: %s", event_type)
        return JSONResponse({})

    logger.info("Processing webhook event: %s (id=%s)", event_type, event_id)

    # 4. One transaction per delivery (webhook has no auth context)
    async with session_factory() as db:
        try:
            outcome = await reconciler.apply(db, record)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info(
                "Event %s raced a concurrent delivery that already stored its effect",
                event_id,
            )
            return JSONResponse({})
        except (ProviderUnavailableError, OperationalError):
            await db.rollback()
            logger.exception("Transient failure processing webhook event %s", event_id)
            if retry_on_transient:
                return JSONResponse(
                    {"error": "temporarily unavailable"},
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                )
            return JSONResponse({})
        except Exception:
            await db.rollback()
            logger.exception("Error processing webhook event %s", event_id)
            return JSONResponse({})

    logger.info("Webhook event %s (%s) reconciled: %s", event_id, event_type, outcome.value)
    return JSONResponse({})
