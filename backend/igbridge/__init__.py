"""igbridge - Instagram credential broker and licensed publishing backend"""

__version__ = "1.0.0"
