"""SEO Sentinel: heading manipulation and visual regression auditing."""

__version__ = "1.0.0"
