import uvicorn

from webhook_pipeline.app import create_app
from webhook_pipeline.dependencies import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
