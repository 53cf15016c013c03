import logging
import uvicorn
from interview_roleplay.settings import settings


logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


def main() -> None:
    host = settings.HOST
    port = settings.PORT
    reload = settings.RELOAD

    uvicorn.run(
        "interview_roleplay.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.LOG_LEVEL.lower(),
    )

if __name__ == "__main__":
    main()
