import uvicorn

from codex_gateway.core.config import settings


def main():
    """Run the gateway with host/port from the environment."""
    uvicorn.run("codex_gateway.main:app", host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()
