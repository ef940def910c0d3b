"""Quality utilities: URL hygiene for article keys."""

from quality.urlnorm import clean_url, extract_domain, is_valid_url

__all__ = ["clean_url", "extract_domain", "is_valid_url"]
