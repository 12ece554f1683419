import uvicorn

from trendle_api.core.settings import settings


def main() -> None:
    uvicorn.run(
        "trendle_api.app:create_app",
        factory=True,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    main()
