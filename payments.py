from decimal import Decimal, InvalidOperation

import stripe

import config
from errors import UpstreamFailure, ValidationFailed
from logging_config import get_logger

logger = get_logger(__name__)


def to_minor_units(price) -> int:
    """Price in cents, truncated. Works in decimal so 19.99 gives 1999."""
    if isinstance(price, bool):
        raise ValidationFailed("Invalid price provided")
    try:
        value = Decimal(str(price))
    except (InvalidOperation, ValueError):
        raise ValidationFailed("Invalid price provided") from None
    if not value.is_finite() or value <= 0:
        raise ValidationFailed("Invalid price provided")
    amount = int(value * 100)
    if amount < 1:
        raise ValidationFailed("Price is below the smallest currency unit")
    return amount


def create_payment_intent(price, currency=None) -> str:
    """Create a card PaymentIntent and return its client secret."""
    amount = to_minor_units(price)
    if not config.STRIPE_SECRET_KEY:
        logger.error("stripe_key_missing")
        raise UpstreamFailure("Payment provider is not configured")
    try:
        intent = stripe.PaymentIntent.create(
            amount=amount,
            currency=currency or config.PAYMENT_CURRENCY,
            payment_method_types=["card"],
            api_key=config.STRIPE_SECRET_KEY,
        )
    except stripe.StripeError as e:
        logger.error("payment_intent_failed", amount=amount, error=str(e))
        raise UpstreamFailure() from e
    logger.info("payment_intent_created", amount=amount, intent_id=intent["id"])
    return intent["client_secret"]
