import logging

from app.services.batch_scheduler import BatchRequest, get_batch_scheduler
from app.services.odds_repository import StorageUnavailableError

logger = logging.getLogger("arbscan.odds_poller")


async def poll_odds() -> None:
    """Periodic batch over the configured sports and markets.

    Uses the same TTL gate and fingerprints as the HTTP trigger, so a manual
    run right before the interval fires costs no extra provider quota.
    """
    scheduler = get_batch_scheduler()
    try:
        result = await scheduler.run_batch(BatchRequest())
    except StorageUnavailableError as e:
        logger.error("Odds poll skipped: %s", e)
        return

    if result["errors"]:
        logger.warning("Odds poll finished with %d errors: %s", len(result["errors"]), result["errors"][:3])
    if result["total_odds"]:
        logger.info("Polled odds: %d events, %d rows written", result["total_events"], result["total_odds"])

    usage = getattr(scheduler.provider, "api_usage", None) or {}
    if usage.get("requests_remaining") is not None:
        logger.info(
            "API usage: %s used, %s remaining",
            usage.get("requests_used", "?"),
            usage.get("requests_remaining", "?"),
        )
