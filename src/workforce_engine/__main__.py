"""Entry point for running the API with uvicorn."""

import uvicorn

from workforce_engine.config import get_settings
from workforce_engine.logging_config import configure_logging


def main() -> None:
    """Run the application."""
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "workforce_engine.api.app:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    main()
