"""
PicBoot - serial bootloader client for PIC microcontrollers

Erase, read and write program memory over the PicBoot framing protocol,
and convert firmware images to and from Intel-HEX.
"""

__version__ = "0.1.0"

from picboot.protocol import Bootloader, SerialTransport
from picboot.hex_image import HexImage, MemoryBlock
from picboot.models import AddressRange, DeviceProfile

__all__ = [
    "Bootloader",
    "SerialTransport",
    "HexImage",
    "MemoryBlock",
    "AddressRange",
    "DeviceProfile",
    "__version__",
]
