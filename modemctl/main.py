"""Main entrypoint: modem service + HTTP API server."""

import logging
import os

from . import web
from .config import ConfigManager
from .service import ModemService
from .storage import UserStore

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("modemctl.main")


def main():
    data_dir = os.environ.get("DATA_DIR", "/data")
    config_mgr = ConfigManager(data_dir)

    log.info("modemctl starting")

    store = UserStore(os.path.join(data_dir, "users.json"))
    service = ModemService.from_config(config_mgr, store=store)
    web.init_config(config_mgr)
    web.init_service(service)

    if not config_mgr.is_api_protected():
        log.warning("API_TOKEN not set, HTTP API is unauthenticated")

    web_port = config_mgr.get("web_port")
    log.info("HTTP API listening on port %d", web_port)

    from waitress import serve
    try:
        serve(web.app, host="0.0.0.0", port=web_port, threads=8, _quiet=True)
    except KeyboardInterrupt:
        log.info("Shutting down")
    finally:
        service.shutdown()


if __name__ == "__main__":
    main()
