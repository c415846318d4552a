from __future__ import annotations

"""Upload a local audio file to a running voicenotes instance.

Usage:
  python scripts/post_recording.py path/to/recording.webm [--note "text"]

The script auto-loads `.env` from the project root (or parent dirs) using
python-dotenv. VOICENOTES_URL selects the instance (default
http://localhost:$PORT, PORT defaulting to 3000).
"""

import argparse
import mimetypes
import os
import sys
from pathlib import Path

import httpx
from dotenv import load_dotenv, find_dotenv


def main() -> None:
    # Auto-load .env (search upwards)
    load_dotenv(find_dotenv(), override=False)

    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("path", type=Path)
    parser.add_argument("--note", default=None)
    args = parser.parse_args()

    if not args.path.is_file():
        print(f"No such file: {args.path}", file=sys.stderr)
        sys.exit(1)

    base = os.environ.get("VOICENOTES_URL") or f"http://localhost:{os.environ.get('PORT', '3000')}"
    mime = mimetypes.guess_type(args.path.name)[0] or "audio/webm"
    data = {"note": args.note} if args.note else None
    with args.path.open("rb") as fh:
        resp = httpx.post(
            f"{base.rstrip('/')}/api/transcribe",
            files={"audio": (args.path.name, fh, mime)},
            data=data,
            timeout=120.0,
        )
    print(resp.status_code, resp.text)


if __name__ == "__main__":
    main()
