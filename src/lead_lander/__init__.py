"""Lead Lander - lead capture, quiz routing and CRM delivery pipeline."""

__version__ = "1.0.0"
