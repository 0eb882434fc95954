"""Serve the webhook admission app: ``python -m webhook_admission``."""

from __future__ import annotations

import logging

import uvicorn
from dotenv import load_dotenv

from webhook_admission.app import create_app
from webhook_admission.config import WebhookSettings


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = WebhookSettings.from_env()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
