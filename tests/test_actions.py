"""Tests for the device workflows."""

import logging

from picboot.core.actions import (
    erase_device,
    load_image,
    read_device,
    start_application,
    write_device,
)
from picboot.hex_image import EOF_RECORD, REC_DATA, HexImage, hex_record
from picboot.models.profiles import AddressRange
from picboot.protocol.bootloader import BootCmd, SessionStatus

from conftest import make_profile


def _write_hex(tmp_path, *records: str) -> str:
    path = tmp_path / "app.hex"
    path.write_text("\n".join(records) + "\n", encoding="ascii")
    return str(path)


class TestErase:
    def test_whole_program_memory(self, session, caplog) -> None:
        profile = make_profile()
        caplog.set_level(logging.INFO, logger="picboot")
        bl, sim, _ = session(profile)
        result = erase_device(bl, profile)
        assert result.ok
        assert result.operation == "erase"
        assert result.bytes_len == 0x400
        assert sim.opcodes() == [BootCmd.ER_PROG]
        assert "Command finished." in caplog.text

    def test_stops_at_first_failing_range(self, session) -> None:
        profile = make_profile(prog_ranges=(AddressRange(0x000, 0x0FF), AddressRange(0x200, 0x2FF)))
        bl, sim, _ = session(profile)
        sim.drop_opcodes.add(BootCmd.ER_PROG)
        result = erase_device(bl, profile)
        assert not result.ok
        assert result.errors == ["Target did not respond correctly."]
        assert {c[2] for c in sim.commands} == {0x000}
        assert result.metadata["error_kind"] == "protocol"

    def test_explicit_range(self, session) -> None:
        profile = make_profile()
        bl, sim, _ = session(profile)
        result = erase_device(bl, profile, [AddressRange(0x100, 0x17F)])
        assert result.ok
        assert result.region == "0x100 .. 0x17F"
        assert sim.commands == [(BootCmd.ER_PROG, 2, 0x100, b"")]


    def test_region_past_24_bit_addresses(self, session) -> None:
        profile = make_profile()
        bl, sim, _ = session(profile)
        result = erase_device(bl, profile, [AddressRange(0x1000000, 0x100003F)])
        assert not result.ok
        assert result.metadata["error_kind"] == "parameter"
        assert sim.commands == []
        assert bl.status == SessionStatus.IDLE


class TestRead:
    def test_image_matches_device(self, session) -> None:
        profile = make_profile()
        bl, sim, _ = session(profile)
        result, image = read_device(bl, profile)
        assert result.ok
        assert result.bytes_len == 0x400
        assert len(image.blocks) == 1
        assert image.blocks[0].first_addr == 0
        assert image.blocks[0].data == sim.memory[:0x400]

    def test_failure_returns_no_image(self, session) -> None:
        profile = make_profile()
        bl, sim, _ = session(profile)
        sim.short_reads = True
        result, image = read_device(bl, profile)
        assert image is None
        assert result.errors == ["Invalid length of response."]
        assert bl.status == SessionStatus.ERROR
        assert result.metadata["error_kind"] == "length_mismatch"


class TestLoadImage:
    def test_clean_file(self, tmp_path) -> None:
        profile = make_profile()
        path = _write_hex(tmp_path, hex_record(0x10, REC_DATA, b"\x01\x02"), EOF_RECORD)
        result, image = load_image(profile, path)
        assert result.ok
        assert result.warnings == []
        assert result.metadata["clean"] is True
        assert image.blocks[0].data[0x10:0x12] == b"\x01\x02"

    def test_problems_become_warnings(self, tmp_path) -> None:
        profile = make_profile()
        path = _write_hex(tmp_path, ":0000", hex_record(0x10, REC_DATA, b"\x01"), EOF_RECORD)
        result, image = load_image(profile, path)
        assert result.ok
        assert image is not None
        assert result.metadata["clean"] is False
        assert result.warnings == ["Ignoring short line @line [1]: :0000"]

    def test_unmapped_address_fails(self, tmp_path) -> None:
        profile = make_profile()
        path = _write_hex(tmp_path, hex_record(0x8000, REC_DATA, b"\x01"), EOF_RECORD)
        result, image = load_image(profile, path)
        assert image is None
        assert not result.ok
        assert "0x8000" in result.errors[0]

    def test_missing_file(self, tmp_path) -> None:
        result, image = load_image(make_profile(), tmp_path / "missing.hex")
        assert image is None
        assert result.errors[0].startswith("Cannot read")


class TestWrite:
    def test_image_is_programmed(self, session) -> None:
        profile = make_profile()
        bl, sim, _ = session(profile)
        image = HexImage.for_ranges(profile.prog_ranges, profile.bytes_per_addr)
        image.loads("\n".join([hex_record(0x20, REC_DATA, b"\xDE\xAD\xBE\xEF"), EOF_RECORD]), 1)
        result = write_device(bl, profile, image)
        assert result.ok
        assert result.bytes_len == 0x400
        # 256 write blocks, 16 per packet
        assert sim.opcodes() == [BootCmd.WR_PROG] * 16
        assert sim.memory[0x20:0x24] == b"\xDE\xAD\xBE\xEF"
        assert sim.memory[0x24] == 0xFF

    def test_failure_reported(self, session) -> None:
        profile = make_profile()
        bl, sim, transport = session(profile)
        image = HexImage.for_ranges(profile.prog_ranges, profile.bytes_per_addr)
        transport.close()
        result = write_device(bl, profile, image)
        assert not result.ok
        assert result.errors


class TestStartApplication:
    def test_success(self, session) -> None:
        profile = make_profile()
        bl, sim, _ = session(profile)
        result = start_application(bl, profile)
        assert result.ok
        assert sim.opcodes() == [BootCmd.WR_DATA, BootCmd.RESET]

    def test_closed_port(self, session) -> None:
        profile = make_profile()
        bl, sim, transport = session(profile)
        transport.close()
        result = start_application(bl, profile)
        assert not result.ok
        assert result.errors == ["Port is closed."]
        assert result.metadata["error_kind"] == "transport"


class TestOperationResult:
    def test_summary_and_dict(self) -> None:
        from picboot.core.results import OperationResult

        result = OperationResult.success("erase", profile="TEST", ranges=[AddressRange(0x800, 0xFFF)])
        result.bytes_len = 0x800
        result.add_warning("slow")
        summary = result.to_summary()
        assert summary.splitlines()[0] == "[OK] erase"
        assert "0x800 .. 0xFFF (2,048 units)" in summary
        assert "Bytes:   2,048 (0x800)" in summary
        assert result.to_dict()["ranges"] == [{"first": 0x800, "last": 0xFFF}]

    def test_failure(self) -> None:
        from picboot.core.results import OperationResult

        result = OperationResult.failure("run", "Port is closed.", profile="TEST")
        assert not result.ok
        assert result.errors == ["Port is closed."]
        assert "Error:   Port is closed." in result.to_summary()
