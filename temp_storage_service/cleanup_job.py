"""Trigger one cleanup sweep on the running service and exit.

The sweep runs inside the service process, which owns the metadata store and
knows which uploads are still in flight. Running a second store against the
same directories would treat files committed after its snapshot load as
orphans.

Usage: python cleanup_job.py [service_url]
"""
import asyncio
import sys
from datetime import datetime, timezone
from typing import Optional

import httpx

import schemas
from config import settings
from logging_config import get_logger

logger = get_logger(__name__)

# a sweep over a large storage directory can take a while
SWEEP_TIMEOUT = httpx.Timeout(10.0, read=300.0)

async def request_sweep(client: httpx.AsyncClient, service_url: str) -> schemas.SweepResult:
    cleanup_url = f"{service_url.rstrip('/')}/api/cleanup"
    logger.info(f"Requesting cleanup sweep at {cleanup_url}")
    response = await client.post(cleanup_url)
    response.raise_for_status()
    return schemas.SweepResult.model_validate(response.json())

async def run_cleanup_job(
    service_url: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> int:
    service_url = service_url or settings.service_url
    print("=" * 60)
    print("Temporary File Storage - Manual Cleanup Job")
    print("=" * 60)
    print(f"Started at: {datetime.now(timezone.utc).isoformat()}")
    print(f"Service: {service_url}\n")

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=SWEEP_TIMEOUT) as own_client:
                result = await request_sweep(own_client, service_url)
        else:
            result = await request_sweep(client, service_url)
    except httpx.HTTPStatusError as e:
        logger.error(f"Cleanup request failed. Status: {e.response.status_code}, Response: {e.response.text}")
        print(f"Cleanup failed: service answered {e.response.status_code}", file=sys.stderr)
        return 1
    except httpx.RequestError as e:
        logger.error(f"Cleanup request failed. Request failed: {str(e)}")
        print(f"Cleanup failed: could not reach {service_url}", file=sys.stderr)
        return 1

    print("=" * 60)
    print("Cleanup Results:")
    print("=" * 60)
    print(f"Expired files deleted: {result.expired_deleted}")
    print(f"Orphaned metadata cleaned: {result.orphaned_metadata_removed}")
    print(f"Orphaned files removed: {result.orphaned_files_removed}")
    if result.success:
        print("\nCleanup completed successfully!")
        return 0
    for error in result.errors:
        print(f"Cleanup error: {error}", file=sys.stderr)
    return 1

if __name__ == "__main__":
    sys.exit(asyncio.run(run_cleanup_job(sys.argv[1] if len(sys.argv) > 1 else None)))
