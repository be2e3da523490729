"""
Result objects for device workflows.

Every workflow in picboot.core.actions returns an OperationResult; the
CLI prints `to_summary()`, anything else can use `to_dict()`.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from picboot.models.profiles import AddressRange


@dataclass
class OperationResult:
    """
    Outcome of one erase/read/load/write/run workflow.

    Attributes:
        ok: False as soon as any error was added
        operation: Workflow name ("erase", "read", "load", "write", "run")
        profile: Device profile name
        ranges: Program memory ranges the workflow covered
        bytes_len: Bytes erased, read, loaded or written
        warnings: Problems that did not stop the workflow (IHEX line errors)
        errors: Reason the workflow stopped
        metadata: Workflow specific extras (source file, clean load flag)
    """
    ok: bool
    operation: str
    profile: str = ""
    ranges: List[AddressRange] = field(default_factory=list)
    bytes_len: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def region(self) -> str:
        return ", ".join(str(r) for r in self.ranges)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Record a failure reason and mark the result as failed."""
        self.errors.append(message)
        self.ok = False

    def to_summary(self) -> str:
        status = "OK" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]
        if self.profile:
            lines.append(f"  Profile: {self.profile}")
        for rng in self.ranges:
            lines.append(f"  Range:   {rng} ({rng.size:,} units)")
        if self.bytes_len:
            lines.append(f"  Bytes:   {self.bytes_len:,} (0x{self.bytes_len:X})")
        lines.extend(f"  Warning: {w}" for w in self.warnings)
        lines.extend(f"  Error:   {e}" for e in self.errors)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "operation": self.operation,
            "profile": self.profile,
            "ranges": [{"first": r.first, "last": r.last} for r in self.ranges],
            "bytes_len": self.bytes_len,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def success(
        cls,
        operation: str,
        profile: str = "",
        ranges: Iterable[AddressRange] = (),
        **kwargs,
    ) -> "OperationResult":
        return cls(ok=True, operation=operation, profile=profile, ranges=list(ranges), **kwargs)

    @classmethod
    def failure(cls, operation: str, error: str, profile: str = "", **kwargs) -> "OperationResult":
        result = cls(ok=True, operation=operation, profile=profile, **kwargs)
        result.add_error(error)
        return result
