"""Business logic for owners, move requests and accounts."""
