import logging

from pub_artifact_registry.api.api import create_app
from pub_artifact_registry.domain.models.models import ServerConfig


def main():
    # Configuration - read from environment variables, restart to change
    config = ServerConfig.from_env()

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger("pub_artifact_registry")

    app = create_app(config)
    logger.info(
        "Serving %s/%s/%s on %s:%d",
        config.project_id,
        config.location,
        config.repository,
        config.host,
        config.port,
    )
    app.run(host=config.host, port=config.port, threaded=True)


if __name__ == "__main__":
    main()
