from django.core.management.base import BaseCommand, CommandError

from favourites.exceptions import UpstreamUnavailable
from films.feed import get_feed_client


class Command(BaseCommand):
    help = "Clear the cached upcoming-films payload and fetch a fresh copy."

    def add_arguments(self, parser):
        parser.add_argument(
            "--clear-only",
            action="store_true",
            help="Only drop the cached payload, do not refetch.",
        )

    def handle(self, *args, **options):
        client = get_feed_client()
        client.clear_cache()
        self.stdout.write("Film feed cache cleared.")

        if options["clear_only"]:
            return

        try:
            payload = client.fetch()
        except UpstreamUnavailable as exc:
            raise CommandError(f"Film feed refresh failed: {exc.user_message}")

        following = payload.get("following_production") or {}
        self.stdout.write(
            self.style.SUCCESS(
                f"Cached '{payload['title']}' ({payload['release_date']})"
                + (
                    f", followed by '{following['title']}'"
                    if following.get("title")
                    else ""
                )
            )
        )
