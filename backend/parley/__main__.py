"""Run the Parley backend with uvicorn."""

import uvicorn

from parley.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "parley.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
