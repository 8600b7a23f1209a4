"""Local entry point: `python -m mistakebook`."""

import uvicorn

from .config import settings


def main() -> None:
    uvicorn.run(
        "mistakebook.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
        proxy_headers=False,
    )


if __name__ == "__main__":
    main()
