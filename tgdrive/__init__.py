"""tgdrive - file storage on top of Telegram"""

__version__ = "0.1.0"
