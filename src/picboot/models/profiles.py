"""
Device profiles for PicBoot targets.

A profile describes one CPU: serial defaults, erase/read/write block
granularity, packet limits and the memory map. Profiles are read from a
`cpus.xml` file:

    <cpu_list>
      <cpu>
        <name>PIC18F46K22</name>
        <baud>115200</baud>
        <timeout>2000</timeout>
        <write_block>32</write_block>
        <read_block>1</read_block>
        <erase_block>64</erase_block>
        <max_pkt_size>256</max_pkt_size>
        <bytes_per_addr>1</bytes_per_addr>
        <prog><first>800</first><last>FFFF</last></prog>
        <data><first>0</first><last>3FF</last></data>
      </cpu>
    </cpu_list>

Block sizes, packet size and word width are decimal; addresses are hex.

Usage:
    from picboot.models import load_profiles, get_profile

    profiles = load_profiles("cpus.xml")
    profile = get_profile(profiles, "PIC18F46K22")
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_BAUD = 115200
DEFAULT_TIMEOUT_MS = 2000
MIN_BAUD = 300
MAX_BAUD = 1000000
MAX_ADDRESS = 0xFFFFFF  # bootloader commands carry 24-bit addresses


class ProfileConfigError(Exception):
    """Profile file is missing, malformed or describes an unusable device."""
    pass


@dataclass(frozen=True)
class AddressRange:
    """Inclusive address range in address units."""
    first: int
    last: int

    @property
    def is_valid(self) -> bool:
        return self.first <= self.last

    @property
    def size(self) -> int:
        """Number of address units covered."""
        return self.last - self.first + 1

    def __str__(self) -> str:
        return f"0x{self.first:X} .. 0x{self.last:X}"


@dataclass(frozen=True)
class DeviceProfile:
    """Immutable description of one target CPU."""
    name: str
    write_block: int
    read_block: int
    erase_block: int
    max_pkt_size: int
    bytes_per_addr: int
    prog_ranges: Tuple[AddressRange, ...]
    data_range: AddressRange
    baud: int = DEFAULT_BAUD
    timeout: int = DEFAULT_TIMEOUT_MS  # UART read timeout [ms]

    def validate(self) -> None:
        """
        Check the profile is usable by the region operations.

        Raises:
            ProfileConfigError: On the first problem found
        """
        for field_name in ("write_block", "read_block", "erase_block", "max_pkt_size", "bytes_per_addr"):
            if getattr(self, field_name) <= 0:
                raise ProfileConfigError(f"{self.name}: {field_name} must be > 0")
        if self.max_pkt_size < self.read_block * self.bytes_per_addr:
            raise ProfileConfigError(f"{self.name}: max_pkt_size too small for one read block")
        if self.max_pkt_size < self.write_block * self.bytes_per_addr:
            raise ProfileConfigError(f"{self.name}: max_pkt_size too small for one write block")
        if not self.prog_ranges:
            raise ProfileConfigError(f"{self.name}: no program memory range")
        for rng in self.prog_ranges + (self.data_range,):
            if not rng.is_valid:
                raise ProfileConfigError(f"{self.name}: bad memory range {rng}")
            if rng.last > MAX_ADDRESS:
                raise ProfileConfigError(f"{self.name}: memory range {rng} does not fit in 24-bit addresses")

    @property
    def prog_size(self) -> int:
        """Total program memory in bytes."""
        return sum(r.size for r in self.prog_ranges) * self.bytes_per_addr


def _text(node: ET.Element, tag: str, required: bool = True) -> Optional[str]:
    child = node.find(tag)
    if child is None or child.text is None or not child.text.strip():
        if required:
            raise ProfileConfigError(f"Missing <{tag}>")
        return None
    return child.text.strip()


def _int(node: ET.Element, tag: str, base: int = 10) -> int:
    value = _text(node, tag)
    try:
        return int(value, base)
    except ValueError:
        raise ProfileConfigError(f"Invalid <{tag}> value '{value}'")


def _range(node: Optional[ET.Element], tag: str) -> AddressRange:
    if node is None:
        raise ProfileConfigError(f"Missing <{tag}>")
    return AddressRange(first=_int(node, "first", 16), last=_int(node, "last", 16))


def _parse_cpu(node: ET.Element) -> DeviceProfile:
    name = _text(node, "name")
    try:
        baud_text = _text(node, "baud", required=False)
        baud = int(baud_text) if baud_text is not None else DEFAULT_BAUD
        if baud < MIN_BAUD or baud > MAX_BAUD:
            logger.warning(f"{name}: baud {baud} out of range, using {DEFAULT_BAUD}")
            baud = DEFAULT_BAUD

        timeout_text = _text(node, "timeout", required=False)
        timeout = int(timeout_text) if timeout_text is not None else DEFAULT_TIMEOUT_MS

        profile = DeviceProfile(
            name=name,
            baud=baud,
            timeout=timeout,
            write_block=_int(node, "write_block"),
            read_block=_int(node, "read_block"),
            erase_block=_int(node, "erase_block"),
            max_pkt_size=_int(node, "max_pkt_size"),
            bytes_per_addr=_int(node, "bytes_per_addr"),
            prog_ranges=tuple(_range(p, "prog") for p in node.findall("prog")),
            data_range=_range(node.find("data"), "data"),
        )
    except ValueError as e:
        raise ProfileConfigError(f"{name}: {e}")
    except ProfileConfigError as e:
        raise ProfileConfigError(f"{name}: {e}")
    profile.validate()
    return profile


def parse_profiles(xml_text: str) -> List[DeviceProfile]:
    """
    Parse profiles from cpus.xml content.

    Raises:
        ProfileConfigError: If the XML is malformed, empty or a profile is invalid
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ProfileConfigError(f"Invalid profile XML: {e}")
    if root.tag != "cpu_list":
        raise ProfileConfigError(f"Expected <cpu_list> root, got <{root.tag}>")
    profiles = [_parse_cpu(node) for node in root.findall("cpu")]
    if not profiles:
        raise ProfileConfigError("No <cpu> entries found")
    return profiles


def load_profiles(path: Union[str, Path]) -> List[DeviceProfile]:
    """Load profiles from a cpus.xml file."""
    path = Path(path)
    try:
        xml_text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ProfileConfigError(f"Cannot read profile file {path}: {e}")
    profiles = parse_profiles(xml_text)
    logger.debug(f"Loaded {len(profiles)} profiles from {path}")
    return profiles


def list_profiles(profiles: List[DeviceProfile]) -> List[str]:
    """Return profile names in file order."""
    return [p.name for p in profiles]


def get_profile(profiles: List[DeviceProfile], name: Optional[str] = None) -> DeviceProfile:
    """
    Select a profile by name (case-insensitive), or the first one.

    Raises:
        ProfileConfigError: If no profile matches
    """
    if not profiles:
        raise ProfileConfigError("No profiles loaded")
    if name is None:
        return profiles[0]
    wanted = name.strip().upper()
    for profile in profiles:
        if profile.name.upper() == wanted:
            return profile
    raise ProfileConfigError(
        f"Unknown profile '{name}'. Available: {', '.join(list_profiles(profiles))}"
    )
