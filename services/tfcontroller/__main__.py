"""
Controller entrypoint.

Run via: python -m tfcontroller
"""

import uvicorn

from tfcontroller.config import settings


def main() -> None:
    uvicorn.run(
        "tfcontroller.api.app:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
