import asyncio
import contextvars
from concurrent.futures import ThreadPoolExecutor

# Decoding, parsing, sanitizing and scoring are CPU-bound; keep them off the event loop
_analysis_executor = ThreadPoolExecutor(max_workers=4)


async def run_blocking(func, *args):
    """Run *func* on the shared pool with the caller's context (request id included)."""
    loop = asyncio.get_running_loop()
    ctx = contextvars.copy_context()
    return await loop.run_in_executor(_analysis_executor, ctx.run, func, *args)
