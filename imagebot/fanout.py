# imagebot/fanout.py

import asyncio
import logging

from .backend_client import ImageBackend
from .errors import BackendError
from .model import GenerationRequest, Outcome

logger = logging.getLogger(__name__)


async def generate(backend: ImageBackend, request: GenerationRequest, attempts: int) -> Outcome:
    """
    Run `attempts` independent submissions of the same request concurrently
    and wait for every one of them.

    Images and errors are recorded in settlement order, not submission order,
    so two runs with the same inputs may list images differently.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be at least 1, got {attempts}")

    tasks = [asyncio.create_task(backend.submit(request)) for _ in range(attempts)]
    outcome = Outcome(attempts=attempts)

    try:
        for settled in asyncio.as_completed(tasks):
            try:
                image = await settled
            except BackendError as e:
                logger.error("[Fanout] Attempt failed (%s): %s", e.kind, e)
                outcome.errors.append(str(e))
            except Exception as e:
                logger.exception("[Fanout] Unexpected error in attempt: %s", e)
                outcome.errors.append(str(e) or type(e).__name__)
            else:
                outcome.images.append(image)
    finally:
        # only reached with pending attempts when generate itself is cancelled
        for task in tasks:
            if not task.done():
                task.cancel()

    logger.info(
        "[Fanout] %d/%d attempts produced images",
        len(outcome.images),
        attempts,
    )
    return outcome
