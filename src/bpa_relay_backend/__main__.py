import uvicorn

from .configuration import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "bpa_relay_backend.main:app",
        host="0.0.0.0",
        port=settings.server.port,
        log_level=settings.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()
