import logging

import uvicorn

from iptvlinks.config import load_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def main():
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )
    log = logging.getLogger("server")
    log.info("Serving on http://%s:%d/", settings.host, settings.port)

    config = uvicorn.Config(
        "iptvlinks.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    server.run()


if __name__ == "__main__":
    main()
