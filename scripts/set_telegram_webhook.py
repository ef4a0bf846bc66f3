from __future__ import annotations

import argparse

from mamacare.core.config import settings
from mamacare.services.telegram import get_bot


def main():
    parser = argparse.ArgumentParser(description="Point the nurse bot's webhook at this backend.")
    parser.add_argument(
        "--url",
        default=f"{settings.PUBLIC_BASE_URL.rstrip('/')}/telegram/webhook",
        help="public webhook URL (default: PUBLIC_BASE_URL/telegram/webhook)",
    )
    args = parser.parse_args()

    bot = get_bot()
    try:
        ok = bot.set_webhook(args.url, secret_token=settings.TELEGRAM_WEBHOOK_SECRET)
    finally:
        bot.close()

    print(f"Webhook: {args.url}")
    print(f"Secret token: {'set' if settings.TELEGRAM_WEBHOOK_SECRET else 'not set'}")
    print("OK" if ok else "Telegram did not accept the webhook")


if __name__ == "__main__":
    main()
