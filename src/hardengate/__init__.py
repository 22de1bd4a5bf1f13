"""hardengate - CIS hardening and compliance gating for golden-image builds."""

__version__ = "1.0.0"
