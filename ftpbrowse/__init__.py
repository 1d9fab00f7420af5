"""Terminal browser for FTP/FTPS servers"""

__version__ = "1.0.0"
