from __future__ import annotations

import json
from pathlib import Path

import pytest
from helpers import tree_entries, write_archive, write_elf, write_fake_emulator

from rockctl.cli.main import main
from rockctl.exit_codes import ERR_CONFIG, ERR_HOST, ERR_INCONCLUSIVE, ERR_PREREQ, ERR_WILL_NOT_BOOT, OK

pytestmark = pytest.mark.integration


def _run_json(capsys: pytest.CaptureFixture[str], argv: list[str]) -> tuple[int, dict]:
    code = main(["--json", "--run-id", "t-1", *argv])
    out = capsys.readouterr().out
    return code, json.loads(out)


def test_image_build_then_verify(staged: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    output = tmp_path / "initrd.cpio.gz"
    code, payload = _run_json(capsys, ["image", "build", str(staged), "-o", str(output), "--mtime", "0"])
    assert code == OK
    assert payload["schema_name"] == "rockctl.build.v1"
    assert payload["stage"] == "done"
    assert payload["run_id"] == "t-1"

    code, payload = _run_json(capsys, ["image", "verify", str(output)])
    assert code == OK
    assert payload["target_kind"] == "archive"
    assert payload["critical_errors"] == []


def test_image_build_failure_exits_one(staged: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (staged / "sbin/init").unlink()
    output = tmp_path / "initrd.cpio.gz"
    code, payload = _run_json(capsys, ["image", "build", str(staged), "-o", str(output)])
    assert code == ERR_WILL_NOT_BOOT
    assert payload["stage"] == "pre-check"
    assert [f["path"] for f in payload["critical_errors"]] == ["/sbin/init"]
    assert not output.exists()


def test_verify_text_output(staged: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (staged / "proc").rmdir()
    code = main(["--format", "text", "verify", "structure", str(staged)])
    out = capsys.readouterr().out
    assert code == ERR_WILL_NOT_BOOT
    assert "CRITICAL /proc: critical directory is missing" in out
    assert "[FAIL] contract/directories" in out
    assert out.rstrip().splitlines()[-1].startswith("result: FAIL")


def test_verify_strict_devices_flag(staged: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, payload = _run_json(capsys, ["verify", "integration", str(staged), "--strict-devices"])
    assert code == ERR_WILL_NOT_BOOT
    assert "/dev/console" in [f["path"] for f in payload["critical_errors"]]


def test_strict_devices_from_config(staged: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    cfg = tmp_path / "rockctl.yaml"
    cfg.write_text("strict_device_nodes: true\n", encoding="utf-8")
    code, _payload = _run_json(capsys, ["--config", str(cfg), "verify", "integration", str(staged)])
    assert code == ERR_WILL_NOT_BOOT


def test_image_list_and_extract(staged: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    archive = write_archive(tmp_path / "initrd.cpio.gz", tree_entries(staged))
    code, payload = _run_json(capsys, ["image", "list", str(archive)])
    assert code == OK
    rows = {row["name"]: row for row in payload["entries"]}
    assert rows["bin/sh"]["type"] == "symlink"
    assert rows["bin/sh"]["link_target"] == "busybox"

    code, payload = _run_json(capsys, ["image", "extract", str(archive)])
    assert code == OK
    assert payload["dest"] == str(tmp_path / "initrd_extracted")
    kinds = {row["path"]: row["type"] for row in payload["critical_paths"]}
    assert kinds["/sbin/init"] == "file"
    assert kinds["/bin/sh"] == "symlink"


def test_deps_scan_and_check(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    libdir = tmp_path / "lib"
    write_elf(libdir / "libssl.so.3", mode=0o644)
    binary = write_elf(tmp_path / "rock-manager", needed=["libssl.so.3", "libc.musl-x86_64.so.1"])

    code, payload = _run_json(capsys, ["deps", "scan", str(binary), "--search-path", str(libdir)])
    assert code == OK
    assert payload["libc"] == "musl"
    assert payload["search_paths"] == [str(libdir)]

    code, payload = _run_json(capsys, ["deps", "verify", str(binary), "--search-path", str(libdir)])
    assert code == ERR_WILL_NOT_BOOT
    assert payload["status"] == "fail"

    code, payload = _run_json(capsys, ["deps", "check", str(binary), "ssl", "--search-path", str(libdir)])
    assert code == OK
    assert payload["required"] and payload["found"]

    code, payload = _run_json(capsys, ["deps", "alpine", str(binary), "--search-path", str(libdir)])
    assert code == OK
    assert payload["portable"]


def test_deps_on_non_elf_reports_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    junk = tmp_path / "junk"
    junk.write_bytes(b"plain text, not a binary")
    code = main(["--json", "deps", "scan", str(junk)])
    err = json.loads(capsys.readouterr().err)
    assert code == ERR_PREREQ
    assert err["errors"][0]["kind"] == "binary_format"


def test_contract_commands(capsys: pytest.CaptureFixture[str]) -> None:
    code, payload = _run_json(capsys, ["contract", "cmdline", "production"])
    assert code == OK
    assert payload["cmdline"].startswith("init=/sbin/init ")

    code = main(["--json", "contract", "check-cmdline", "rdinit=/sbin/init console=ttyS0"])
    err = json.loads(capsys.readouterr().err)
    assert code == ERR_CONFIG
    assert err["errors"][0]["kind"] == "kernel_cmdline"

    code, payload = _run_json(capsys, ["contract", "show"])
    assert code == OK
    assert payload["contract"]["shell"] == "/bin/sh"


def test_invalid_config_exits_config_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    cfg = tmp_path / "bad.yaml"
    cfg.write_text("nonsense: true\n", encoding="utf-8")
    code = main(["--format", "text", "--config", str(cfg), "contract", "show"])
    assert code == ERR_CONFIG
    assert "rockctl: config:" in capsys.readouterr().err


def _boot_inputs(tmp_path: Path) -> tuple[Path, Path]:
    archive = tmp_path / "initrd.cpio.gz"
    kernel = tmp_path / "bzImage"
    archive.write_bytes(b"\x1f\x8b")
    kernel.write_bytes(b"k")
    return archive, kernel


@pytest.mark.parametrize(
    ("lines", "code", "outcome"),
    [
        (["Run /sbin/init as init process", "rock-init: up"], OK, "success"),
        (["Kernel panic - not syncing"], ERR_WILL_NOT_BOOT, "failed"),
    ],
)
def test_verify_boot_exit_codes(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], lines: list[str], code: int, outcome: str
) -> None:
    archive, kernel = _boot_inputs(tmp_path)
    fake = write_fake_emulator(tmp_path / "emu", lines)
    rc, payload = _run_json(
        capsys, ["--quiet", "verify", "boot", str(archive), "--kernel", str(kernel), "--emulator", str(fake)]
    )
    assert rc == code
    assert payload["outcome"] == outcome


@pytest.mark.slow
def test_verify_boot_inconclusive(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    archive, kernel = _boot_inputs(tmp_path)
    fake = write_fake_emulator(tmp_path / "emu", ["Booting the kernel."], hang=30)
    rc, payload = _run_json(
        capsys,
        ["--quiet", "verify", "boot", str(archive), "--kernel", str(kernel), "--emulator", str(fake), "--timeout", "1"],
    )
    assert rc == ERR_INCONCLUSIVE
    assert payload["timed_out"]


def test_verify_boot_without_emulator_is_host_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    archive, kernel = _boot_inputs(tmp_path)
    rc = main(["--json", "verify", "boot", str(archive), "--kernel", str(kernel), "--emulator", "rockctl-no-qemu"])
    err = json.loads(capsys.readouterr().err)
    assert rc == ERR_HOST
    assert err["errors"][0]["kind"] == "host_not_boot_capable"


def test_validate_output_round_trip(staged: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _code, payload = _run_json(capsys, ["verify", "integration", str(staged)])
    saved = tmp_path / "verify.json"
    saved.write_text(json.dumps(payload), encoding="utf-8")
    code, result = _run_json(capsys, ["validate-output", "--schema", "rockctl.verify.v1", "--file", str(saved)])
    assert code == OK
    assert result["schema"] == "rockctl.verify.v1"


def test_deps_scan_of_script_reports_unknown_libc(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = tmp_path / "volcano-agent"
    script.write_text("#!/bin/sh\nexec sleep 1\n")
    code, payload = _run_json(capsys, ["deps", "scan", str(script)])
    assert code == OK
    assert payload["kind"] == "script"
    assert payload["libc"] == "unknown"
    assert payload["is_static"] is False
