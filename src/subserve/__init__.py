"""Subserve - static sites per subdomain, published through a Cloudflare tunnel."""

__version__ = "0.1.0"
