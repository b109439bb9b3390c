#!/usr/bin/env python3
"""Drive a scripted after-hours call against a running callcatch server.

Posts to /voice as Twilio would, then answers each speech gather with the
next scripted line, following the callback URL the server hands back.

Usage:
    python scripts/replay_call.py "Canley Vale" "hot water leaking" "yes"
    python scripts/replay_call.py --url https://xyz.ngrok.app --from +61400000000 "Fairfield" ...
    python scripts/replay_call.py --raw ...          # print the TwiML too
"""

import argparse
import sys
import xml.etree.ElementTree as ET
from urllib.parse import urljoin

import httpx


def parse_twiml(xml: str) -> dict:
    """Pull what the caller would hear and where the next turn goes.

    Returns {"said": [...], "gather_url": str | None, "hangup": bool}.
    Spoken text inside a <Gather> is included; <Play> shows its URL.
    """
    root = ET.fromstring(xml)
    said = []
    gather_url = None
    for el in root.iter():
        if el.tag == "Say" and el.text:
            said.append(el.text.strip())
        elif el.tag == "Play" and el.text:
            said.append(f"[audio {el.text.strip()}]")
        elif el.tag == "Gather" and gather_url is None:
            gather_url = el.get("action")
        elif el.tag == "Dial":
            said.append(f"[dial {(el.text or '').strip()}]")
    return {
        "said": said,
        "gather_url": gather_url,
        "hangup": root.find("Hangup") is not None,
    }


def replay(client: httpx.Client, base_url: str, caller: str, lines: list[str], raw: bool = False) -> list[str]:
    """Run one call; returns a printable transcript."""
    out = []
    resp = client.post(urljoin(base_url, "/voice"), data={"From": caller, "To": "", "CallSid": "CAreplay"})
    resp.raise_for_status()
    turn = parse_twiml(resp.text)
    if raw:
        out.append(resp.text)

    remaining = list(lines)
    while True:
        out.extend(f"Agent:  {text}" for text in turn["said"])
        if not turn["gather_url"]:
            break
        if not remaining:
            out.append("(script finished with the call still open)")
            break
        speech = remaining.pop(0)
        out.append(f"Caller: {speech}")
        resp = client.post(urljoin(base_url, turn["gather_url"]), data={"From": caller, "SpeechResult": speech})
        resp.raise_for_status()
        if raw:
            out.append(resp.text)
        turn = parse_twiml(resp.text)

    out.append("(hung up)" if turn["hangup"] else "(no hangup)")
    return out


def main():
    parser = argparse.ArgumentParser(description="Replay a scripted after-hours call")
    parser.add_argument("lines", nargs="*", help="Caller utterances, one per turn")
    parser.add_argument("--url", type=str, default="http://localhost:3000", help="Server base URL")
    parser.add_argument("--from", dest="caller", type=str, default="+61400000000", help="Caller number")
    parser.add_argument("--raw", action="store_true", help="Print the TwiML responses")
    args = parser.parse_args()

    try:
        with httpx.Client(timeout=30.0) as client:
            transcript = replay(client, args.url, args.caller, args.lines, raw=args.raw)
    except httpx.HTTPError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print("\n".join(transcript))


if __name__ == "__main__":
    main()
