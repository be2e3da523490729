"""
Device workflows built on the region operations.

Each function runs a complete user-level operation over every program
memory range of a profile and returns an OperationResult. They block
until done, so front ends run them on a worker thread and poll the
session status meanwhile.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

from picboot.hex_image import HexImage, MemoryBlock, UnmappedAddressError
from picboot.models.profiles import AddressRange, DeviceProfile
from picboot.protocol.bootloader import Bootloader

from .regions import erase_prog_region, read_prog_region, start_app, write_prog_region
from .results import OperationResult

logger = logging.getLogger(__name__)


def _fail(result: OperationResult, bl: Bootloader) -> OperationResult:
    if bl.last_failure is not None:
        result.metadata["error_kind"] = bl.last_failure.error.value
    result.add_error(bl.last_error or "Operation failed")
    return result


def erase_device(
    bl: Bootloader,
    profile: DeviceProfile,
    ranges: Optional[Iterable[AddressRange]] = None,
) -> OperationResult:
    """Erase every program memory range (or the given ones)."""
    ranges = tuple(ranges) if ranges is not None else profile.prog_ranges
    result = OperationResult.success("erase", profile=profile.name, ranges=ranges)
    for rng in ranges:
        if not erase_prog_region(bl, profile, rng):
            return _fail(result, bl)
        result.bytes_len += rng.size * profile.bytes_per_addr
    logger.info("Command finished.")
    return result


def read_device(
    bl: Bootloader,
    profile: DeviceProfile,
    ranges: Optional[Iterable[AddressRange]] = None,
) -> Tuple[OperationResult, Optional[HexImage]]:
    """
    Read program memory into an image.

    Returns:
        (result, image); image is None if any range failed
    """
    ranges = tuple(ranges) if ranges is not None else profile.prog_ranges
    result = OperationResult.success("read", profile=profile.name, ranges=ranges)
    image = HexImage()
    for rng in ranges:
        data = read_prog_region(bl, profile, rng)
        if data is None:
            return _fail(result, bl), None
        image.blocks.append(MemoryBlock(rng.first, bytearray(data)))
    result.bytes_len = image.total_bytes
    logger.info("Command finished.")
    return result, image


def load_image(
    profile: DeviceProfile,
    path: Union[str, Path],
) -> Tuple[OperationResult, Optional[HexImage]]:
    """
    Load an IHEX file into blocks laid out like the profile's program memory.

    Line-level problems become warnings (the image is still returned);
    an address outside the memory map fails the load.
    """
    image = HexImage.for_ranges(profile.prog_ranges, profile.bytes_per_addr)
    result = OperationResult.success(
        "load",
        profile=profile.name,
        ranges=profile.prog_ranges,
        metadata={"path": str(path)},
    )
    try:
        clean = image.load(path, profile.bytes_per_addr)
    except UnmappedAddressError as e:
        logger.error(f"ERROR: {e}")
        result.add_error(str(e))
        return result, None
    except OSError as e:
        return OperationResult.failure(
            "load", f"Cannot read {path}: {e}", profile=profile.name, metadata={"path": str(path)}
        ), None
    for problem in image.problems:
        result.add_warning(str(problem))
    result.metadata["clean"] = clean
    result.bytes_len = image.total_bytes
    return result, image


def write_device(bl: Bootloader, profile: DeviceProfile, image: HexImage) -> OperationResult:
    """Write every block of the image to program memory."""
    bpa = profile.bytes_per_addr
    ranges = [b.address_range(bpa) for b in image.blocks]
    result = OperationResult.success("write", profile=profile.name, ranges=ranges)
    for block, rng in zip(image.blocks, ranges):
        if not write_prog_region(bl, profile, rng, bytes(block.data)):
            return _fail(result, bl)
        result.bytes_len += len(block.data)
    logger.info("Command finished.")
    return result


def start_application(bl: Bootloader, profile: DeviceProfile) -> OperationResult:
    """Leave the bootloader and run the application."""
    if not start_app(bl, profile):
        return _fail(OperationResult.success("run", profile=profile.name), bl)
    logger.info("Command finished.")
    return OperationResult.success("run", profile=profile.name)
