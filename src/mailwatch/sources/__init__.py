from mailwatch.sources.base import MailSource
from mailwatch.sources.router import MailSourceRouter

__all__ = ["MailSource", "MailSourceRouter"]
