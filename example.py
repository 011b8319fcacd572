"""Example script demonstrating synclayer reads, writes and offline replay."""

import asyncio
import logging
import random

from synclayer import CacheStrategy, ManualConnectivity, OperationType, TransientError, build_client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Stand-in for a remote document store
REMOTE: dict[str, dict] = {"students/7": {"name": "Ada", "grade": 5}}


async def fetch_student(student_id: str) -> dict:
    await asyncio.sleep(0.05)
    if random.random() < 0.3:
        raise TransientError("backend unavailable")
    return dict(REMOTE[f"students/{student_id}"])


async def apply_write(operation) -> str:
    await asyncio.sleep(0.05)
    path = f"{operation.resource_kind}/{operation.resource_id or operation.id}"
    if operation.kind == OperationType.DELETE:
        REMOTE.pop(path, None)
    else:
        REMOTE.setdefault(path, {}).update(operation.payload or {})
    return path


async def main():
    """Run a short read/write/offline demonstration."""

    logger.info("=" * 60)
    logger.info("synclayer demo")
    logger.info("=" * 60)

    connectivity = ManualConnectivity(online=True)
    client = build_client(apply_write, connectivity=connectivity)
    await client.start()

    try:
        student = await client.read("doc:students/7", lambda: fetch_student("7"))
        logger.info(f"Read (cache first): {student}")

        student = await client.read(
            "doc:students/7",
            lambda: fetch_student("7"),
            strategy=CacheStrategy.STALE_WHILE_REVALIDATE,
        )
        logger.info(f"Read (stale while revalidate): {student}")

        logger.info("Going offline...")
        connectivity.set_online(False)
        result = await client.write(
            OperationType.UPDATE,
            "students",
            {"grade": 6},
            resource_id="7",
            invalidate=["doc:students/7"],
        )
        logger.info(f"Write while offline: {result.status.value} ({len(client.queue)} queued)")

        logger.info("Back online...")
        connectivity.set_online(True)
        await client.queue.wait_idle()
        logger.info(f"Queue drained, remote now: {REMOTE['students/7']}")
    finally:
        await client.close()


if __name__ == "__main__":
    asyncio.run(main())
