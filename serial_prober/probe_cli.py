#!/usr/bin/env python3

"""CLI tool to find serial ports where a device answers a probe"""

import argparse
import asyncio
import logging
import ok_logging_setup
import serial_prober
import shlex

ok_logging_setup.skip_traceback_for(serial_prober.ProbeSpecInvalid)
ok_logging_setup.skip_traceback_for(serial_prober.SerialScanException)


def main():
    parser = argparse.ArgumentParser(
        description="Find serial ports where a device answers a probe."
    )
    parser.add_argument("--name", default="device", help="Device label")
    parser.add_argument("--baud", "-b", type=int, required=True)
    parser.add_argument(
        "--cmd",
        "-c",
        type=parse_bytes,
        required=True,
        help="Probe command to send (backslash escapes allowed)",
    )
    parser.add_argument(
        "--rsp",
        "-r",
        type=parse_bytes,
        required=True,
        help="Text expected in the reply (backslash escapes allowed)",
    )
    parser.add_argument(
        "--match",
        "-m",
        action="append",
        default=[],
        type=parse_group,
        help="Filter group of 'attr=regex' terms (repeat to OR groups)",
    )
    parser.add_argument(
        "--timeout", type=float, default=0.5, help="Seconds to await reply"
    )
    parser.add_argument(
        "--attempts", type=int, default=5, help="Open attempts on locked ports"
    )
    parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="Print a simple list of device names",
    )
    parser.add_argument(
        "--debug", "-d", action="store_true", help="Log probe details"
    )

    args = parser.parse_args()
    ok_logging_setup.install(
        {"OK_LOGGING_LEVEL": "warning" if args.list else "info"}
    )
    serial_prober.set_debug(args.debug)

    spec = serial_prober.ProbeSpec(
        name=args.name,
        baud=args.baud,
        probe_cmd=args.cmd,
        probe_rsp=args.rsp,
        filter=args.match or [{}],
    )
    opts = serial_prober.ProbeOptions(
        open_attempts=args.attempts, probe_timeout=args.timeout
    )

    found = asyncio.run(probe_ports(spec, opts))
    if not found:
        ok_logging_setup.exit(f"❌ No {spec.name} found")

    num = len(found)
    plural = "" if num == 1 else "s"
    logging.info("🔌 %d %s port%s found", num, spec.name, plural)
    for port in found:
        print(port.name if args.list else format_port(port))


async def probe_ports(
    spec: serial_prober.ProbeSpec, opts: serial_prober.ProbeOptions
) -> list[serial_prober.SerialPort]:
    logging.info("🔎 Probing serial ports for %s...", spec.name)
    prober = serial_prober.SerialProber(spec, opts)
    results = await prober.probe_all()
    for result in results:
        result.conn.close()
    return [r.port for r in results]


def parse_bytes(text: str) -> bytes:
    """Interprets backslash escapes, keeping other characters as UTF-8"""

    return text.encode().decode("unicode-escape").encode("latin-1")


def parse_group(text: str) -> dict[str, str]:
    """Parses "attr=regex attr=regex" (shell-style quoting) to a dict"""

    group = {}
    for term in shlex.split(text):
        key, eq, pattern = term.partition("=")
        if not (key and eq):
            raise argparse.ArgumentTypeError(f"Expected attr=regex: {term!r}")
        group[key.lower()] = pattern
    return group


def format_port(port: serial_prober.SerialPort) -> str:
    words = [port.name]
    for key in "vendor_id product_id serial_number description".split():
        if isinstance(value := port.attr.get(key), str):
            words.append(f"{key}={value!r}")
    return " ".join(words)


if __name__ == "__main__":
    main()
