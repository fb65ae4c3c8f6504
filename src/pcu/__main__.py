"""PCU portal entrypoint.

Run with:
  python -m pcu
"""

import logging

import uvicorn

from pcu.config import server_settings


def main() -> None:
    opts = server_settings()
    logging.basicConfig(
        level=opts["log_level"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "pcu.app:create_app",
        factory=True,
        host=opts["host"],
        port=opts["port"],
        reload=opts["reload"],
        log_level=opts["log_level"].lower(),
    )

if __name__ == "__main__":
    main()
