# main.py
import argparse
import json
import logging
import sqlite3
import time
from typing import Optional

from pydantic import ValidationError

import config
from controllers.reservation_controller import ReservationController
from repositories.user_repository import UserRepository
from reservation_manager.types import InboxProfile, UserProfile

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def seed_owners(path: str, repository: UserRepository) -> int:
    """
    Stores inbox owners from a JSON file of the form
    [{"user": {...}, "inboxes": [{"inbox_id": ..., "name": ..., "persona": ...}]}].
    Returns the number of inboxes saved.
    """
    with open(path, "r") as f:
        entries = json.load(f)

    saved = 0
    for entry in entries:
        user = UserProfile.model_validate(entry["user"])
        repository.save_user(user)
        for inbox in entry.get("inboxes", []):
            repository.save_inbox(InboxProfile.model_validate({**inbox, "user_id": user.id}))
            saved += 1
        logger.info("Stored owner %s", user.id)
    return saved


def main(argv: Optional[list] = None) -> None:
    """Processes webhook payload files with the scheduling assistant."""
    parser = argparse.ArgumentParser(description="Email scheduling assistant")
    parser.add_argument("payloads", nargs="*", help="Path(s) to webhook payload JSON files")
    parser.add_argument("--owners", help="JSON file of inbox owners to store before processing")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level (default from config)")
    args = parser.parse_args(argv)
    if not args.payloads and not args.owners:
        parser.error("nothing to do, pass payload files and/or --owners")

    configure_logging(args.log_level)
    user_repository = UserRepository()

    if args.owners:
        try:
            saved = seed_owners(args.owners, user_repository)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValidationError, sqlite3.Error) as e:
            logger.error("Could not store owners from %s: %s", args.owners, e)
            return
        logger.info("Stored %d inbox(es) from %s", saved, args.owners)

    if not args.payloads:
        return

    logger.info("Starting email scheduling assistant...")
    if config.SKIP_SENDING_EMAILS:
        logger.info("SKIP_SENDING_EMAILS is on, replies will only be logged.")

    controller = ReservationController(user_repository=user_repository)

    for path in args.payloads:
        try:
            with open(path, "r") as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Could not read webhook payload %s: %s", path, e)
            continue

        try:
            controller.process_input(payload)
            time.sleep(2)  # Small delay between messages
        except Exception:
            logger.exception("An unexpected error occurred processing payload %s", path)

    logger.info("Email scheduling assistant run complete.")


if __name__ == '__main__':
    main()
