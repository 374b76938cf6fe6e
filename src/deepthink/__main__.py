"""Run the API with uvicorn: ``python -m src.deepthink``."""

from __future__ import annotations

from dotenv import load_dotenv
import uvicorn

from .core.settings import get_settings


def main() -> None:
    load_dotenv()
    settings = get_settings()
    uvicorn.run(
        "src.deepthink.api.main:app",
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
