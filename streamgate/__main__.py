import uvicorn

from streamgate.config.settings import load_config
from streamgate.main import create_app


def main() -> None:
    config = load_config()
    uvicorn.run(create_app(config), host=config.api.host, port=config.api.port, log_level=config.logging.level.lower())


if __name__ == "__main__":
    main()
