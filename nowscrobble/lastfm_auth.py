"""Interactive Last.fm web auth: prints a session key for LASTFM_SESSION_KEY."""

import os
import webbrowser

import pylast


def authenticate(api_key: str, api_secret: str, wait=input, out=print) -> str:
    network = pylast.LastFMNetwork(api_key=api_key, api_secret=api_secret)
    generator = pylast.SessionKeyGenerator(network)
    url = generator.get_web_auth_url()

    out("Please authorize this application:")
    out(f"  {url}\n")
    webbrowser.open(url)
    wait("After authorizing, press Enter to continue...")

    session_key = generator.get_web_auth_session_key(url)
    out("Session key obtained successfully!\n")
    return session_key


def main() -> int:
    api_key = os.getenv("LASTFM_API_KEY")
    api_secret = os.getenv("LASTFM_API_SECRET")
    if not api_key or not api_secret:
        raise SystemExit("LASTFM_API_KEY and LASTFM_API_SECRET are required")
    try:
        key = authenticate(api_key, api_secret)
    except pylast.WSError as e:
        raise SystemExit(f"Last.fm authentication failed: {e}")
    print(f"LASTFM_SESSION_KEY={key}")
    return 0
