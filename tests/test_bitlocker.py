import types

import pytest

from osd_automation import bitlocker
from osd_automation.bitlocker import BitLockerControl, BitLockerError

STATUS_ON = """
Volume C: [OSDisk]
[OS Volume]

    Size:                 237.84 GB
    BitLocker Version:    2.0
    Conversion Status:    Used Space Only Encrypted
    Percentage Encrypted: 100.0%
    Encryption Method:    XTS-AES 128
    Protection Status:    Protection On
    Lock Status:          Unlocked
"""

STATUS_OFF = STATUS_ON.replace("Protection On", "Protection Off")


def fake_run(returncode=0, stdout=""):
    calls = []

    def run(cmd, capture_output=False, text=False):
        calls.append(cmd)
        return types.SimpleNamespace(returncode=returncode, stdout=stdout, stderr="")

    return run, calls


def test_protection_on(monkeypatch):
    run, calls = fake_run(stdout=STATUS_ON)
    monkeypatch.setattr(bitlocker.subprocess, "run", run)
    assert BitLockerControl().is_protected("C:") is True
    assert calls == [["manage-bde.exe", "-status", "C:"]]


def test_protection_off(monkeypatch):
    run, _ = fake_run(stdout=STATUS_OFF)
    monkeypatch.setattr(bitlocker.subprocess, "run", run)
    assert BitLockerControl().is_protected("C:") is False


def test_suspend_disables_protectors(monkeypatch):
    run, calls = fake_run()
    monkeypatch.setattr(bitlocker.subprocess, "run", run)
    BitLockerControl().suspend("C:")
    assert calls == [["manage-bde.exe", "-protectors", "-disable", "C:"]]


def test_nonzero_exit_raises(monkeypatch):
    run, _ = fake_run(returncode=-2147024809, stdout="ERROR: An error occurred")
    monkeypatch.setattr(bitlocker.subprocess, "run", run)
    with pytest.raises(BitLockerError):
        BitLockerControl().is_protected("C:")


def test_missing_tool_raises(monkeypatch):
    def missing(*a, **kw):
        raise FileNotFoundError("manage-bde.exe")

    monkeypatch.setattr(bitlocker.subprocess, "run", missing)
    with pytest.raises(BitLockerError):
        BitLockerControl().suspend("C:")
