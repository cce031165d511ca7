import struct

TS = "2024-05-02 10:11:12.345"

ACCT_V3 = struct.Struct("<BBHIIIIIIfHHHHHHHH16s")


def line(token, message, level=None, ts=TS, source=None):
    head = f"{ts} ({level})" if level else ts
    fields = [head, token, message]
    if source is not None:
        fields.append(source)
    return "\t".join(fields)


def start(ppid, binary="/bin/sh", policy="Default", version="2.3.90", build="build-1"):
    return f"---------- Starting ({version}) [{build}] ppid={ppid} <{binary}> ({policy}) ----------"


def exited(pid, status=0):
    return f"Process {pid} exit status={status}"


def killed(pid, signal="SIGSEGV (core dumped)"):
    return f"Process {pid} terminated by signal {signal}"


def exec_marker(indirect_pid, binary="/usr/bin/make"):
    return f"EXEC: {binary} indirect pid={indirect_pid}"


def mapped(func, src, dest):
    return f"{func} '{src}' -> '{dest}'"


def passed(func, path):
    return f"pass: {func} '{path}'"


def disabled(func, path):
    return f"disabled(E): {func} '{path}'"


def acct_record(pid, ppid, etime=0.0, utime=0, stime=0, version=3, comm=b"sh"):
    return ACCT_V3.pack(0, version, 0, 0, 0, 0, pid, ppid, 0, etime, utime, stime, 0, 0, 0, 0, 0, 0, comm)
