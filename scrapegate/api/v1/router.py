from fastapi import APIRouter

from scrapegate.api.v1 import proxy, scrape

api_router = APIRouter(prefix="/v1")

api_router.include_router(scrape.router, prefix="/scrape", tags=["Scrape"])
api_router.include_router(proxy.router, prefix="/proxies", tags=["Proxies"])
