"""Keep a directory of Raspberry Pi EEPROM images in sync with a pinned upstream snapshot."""

__version__ = "0.1.0"
