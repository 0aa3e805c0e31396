"""HTTP API for lead intake, quiz sessions and delivery administration."""
