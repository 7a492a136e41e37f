"""Tournament cycle, lifecycle, prizes and payouts."""
