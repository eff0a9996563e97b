"""
Gym KPI Hub server entry point.

Run: python main.py   (DASHBOARD_PORT, DEBUG and ENVIRONMENT come from .env)
"""

import os

from dotenv import load_dotenv

load_dotenv()

from scripts.lib.logger import setup_logger  # noqa: E402

logger = setup_logger("gym-kpi-hub")

PORT = int(os.getenv("DASHBOARD_PORT", "8001"))
DEBUG = os.getenv("DEBUG", "false").lower() == "true"


def run():
    import uvicorn

    auth = "required" if os.getenv("REQUIRE_API_KEY", "false").lower() == "true" else "off (dev admin)"
    logger.info("Gym KPI Hub [%s] on http://0.0.0.0:%d", os.getenv("ENVIRONMENT", "development"), PORT)
    logger.info("  snapshot: /api/kpis/snapshot   docs: /docs   api keys: %s", auth)

    uvicorn.run("dashboard.api.main:app", host="0.0.0.0", port=PORT, reload=DEBUG)


if __name__ == "__main__":
    run()
