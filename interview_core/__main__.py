"""Run the interview streaming service with uvicorn."""

import uvicorn

from interview_core.api.app import create_app
from interview_core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
