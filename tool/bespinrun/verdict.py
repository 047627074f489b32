#
# Copyright 2021, Breakaway Consulting Pty. Ltd.
#
# SPDX-License-Identifier: BSD-2-Clause
#
"""Guest exit status protocol.

The guest writes a status value to the isa-debug-exit port and QEMU
exits with `(status << 1) | 1`. The status values below are fixed by
the kernel. The guest may report values newer than this table; those
decode to Verdict.UNKNOWN rather than failing.
"""
from dataclasses import dataclass
from enum import IntEnum


class Verdict(IntEnum):
    UNKNOWN = -1
    SUCCESS = 0
    RETURN_FROM_MAIN = 1
    KERNEL_PANIC = 2
    OUT_OF_MEMORY = 3
    UNEXPECTED_INTERRUPT = 4
    GENERAL_PROTECTION_FAULT = 5
    UNEXPECTED_PAGE_FAULT = 6
    UNEXPECTED_PROCESS_EXIT = 7

    @classmethod
    def from_status(cls, status: int) -> "Verdict":
        if status < 0:
            return cls.UNKNOWN
        try:
            return cls(status)
        except ValueError:
            return cls.UNKNOWN


VERDICT_MESSAGES = {
    Verdict.SUCCESS: "[SUCCESS]",
    Verdict.RETURN_FROM_MAIN: "[FAIL] ReturnFromMain: main() function returned to arch_independent part.",
    Verdict.KERNEL_PANIC: "[FAIL] Encountered kernel panic.",
    Verdict.OUT_OF_MEMORY: "[FAIL] Encountered OOM.",
    Verdict.UNEXPECTED_INTERRUPT: "[FAIL] Encountered unexpected Interrupt.",
    Verdict.GENERAL_PROTECTION_FAULT: "[FAIL] General Protection Fault.",
    Verdict.UNEXPECTED_PAGE_FAULT: "[FAIL] Unexpected Page Fault.",
    Verdict.UNEXPECTED_PROCESS_EXIT: "[FAIL] Unexpected process exit code when running a user-space test.",
}


def encode_exit_code(status: int) -> int:
    if status < 0:
        raise ValueError(f"guest status must be non-negative (got {status})")
    return (status << 1) | 1


def decode_exit_code(exit_code: int) -> int:
    return exit_code >> 1


@dataclass(frozen=True)
class GuestOutcome:
    exit_code: int
    status: int
    verdict: Verdict

    @property
    def message(self) -> str:
        if self.verdict == Verdict.UNKNOWN:
            return f"[FAIL] Kernel exited with unknown error status {self.status}... Update the script!"
        return VERDICT_MESSAGES[self.verdict]

    @property
    def success(self) -> bool:
        return self.verdict == Verdict.SUCCESS

    @property
    def harness_exit_code(self) -> int:
        return self.status


def decode(exit_code: int) -> GuestOutcome:
    status = decode_exit_code(exit_code)
    return GuestOutcome(exit_code=exit_code, status=status, verdict=Verdict.from_status(status))
