"""
Folio data service entrypoint
"""

import uvicorn

from folio.api.app import create_app
from folio.settings import global_settings
from folio.utils import configure_logging


def main() -> None:
    configure_logging(global_settings.log_level, debug=global_settings.debug)
    uvicorn.run(
        create_app(global_settings),
        host=global_settings.host,
        port=global_settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
