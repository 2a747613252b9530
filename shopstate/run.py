#!/usr/bin/env python3
"""Run the ShopState service"""
import uvicorn

from shopstate.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "shopstate.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
