import os

import uvicorn

from manuflix.core.config import get_settings

if __name__ == "__main__":
    settings = get_settings()

    host = os.environ.get("HOST", settings.HOST)
    port = int(os.environ.get("PORT", settings.PORT))

    # Disable reload in production
    reload = os.getenv("ENV") == "development"

    uvicorn.run(
        "manuflix.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.LOG_LEVEL.lower(),
        workers=1,  # Sessions live in process memory
        lifespan="on",
    )
