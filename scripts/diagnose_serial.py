#!/usr/bin/env python3
import argparse
import codecs
import time

import serial

from mindrace.framing import LineFramer
from mindrace.protocol import BlinkEvent, LinkDecoder


def main():
    p = argparse.ArgumentParser()
    p.add_argument("--port", default="/dev/ttyACM0")
    p.add_argument("--baud", type=int, default=115200)
    p.add_argument("--seconds", type=int, default=5)
    p.add_argument("--raw", action="store_true", help="Also print every raw line")
    args = p.parse_args()

    ser = serial.Serial(args.port, args.baud, timeout=0.2)
    ser.reset_input_buffer()

    framer = LineFramer()
    decoder = LinkDecoder()
    text = codecs.getincrementaldecoder("utf-8")(errors="ignore")
    seen = dropped = 0

    t0 = time.time()
    while time.time() - t0 < args.seconds:
        chunk = text.decode(ser.read(512))
        for line in framer.feed(chunk):
            seen += 1
            if args.raw:
                print(f"RAW {line!r}")
            event = decoder.decode(line)
            if event is None:
                dropped += 1
            elif isinstance(event, BlinkEvent):
                print(f"{event.side.value:<7} blink")
            else:
                print(f"{event.side.value:<7} c={event.concentration} b={event.boost} "
                      f"v={event.laps}/{event.laps_total} q={event.quality} r={event.relaxation}")

    print(f"{seen} lines, {dropped} dropped, link side: {decoder.side.value if decoder.side else 'unbound'}")
    try:
        ser.close()
    except Exception:
        pass


if __name__ == "__main__":
    main()
