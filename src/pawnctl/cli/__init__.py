"""pawnctl command line interface."""
