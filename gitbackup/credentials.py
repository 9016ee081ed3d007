"""
Credential handling for clone URLs

Copyright 2025 HyperSec

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import re
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

REDACTED = "***"

_CREDENTIALS_RE = re.compile(r"(?P<scheme>https?://)(?P<user>[^/\s:@]+):[^/\s@]+@")


def embed_credentials(
    url: str, username: Optional[str], secret: Optional[str] = None
) -> str:
    """
    Return the URL with the given credentials as its user info.

    Any user info already present on the URL is replaced. Username and secret
    are percent-encoded so tokens and passwords containing reserved characters
    survive. With no username the URL is returned without user info.

    Args:
        url: HTTP(S) clone URL as reported by the provider
        username: User name to embed, or None
        secret: Token or password to embed after the user name

    Returns:
        Clone URL usable by git without an interactive prompt
    """
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValueError(f"Not an HTTP(S) clone URL: {redact_url(url)}")

    host = parts.hostname
    if parts.port:
        host = f"{host}:{parts.port}"

    if username:
        userinfo = quote(username, safe="")
        if secret:
            userinfo += ":" + quote(secret, safe="")
        host = f"{userinfo}@{host}"

    return urlunsplit(parts._replace(netloc=host))


def redact_url(text: str) -> str:
    """Mask the secret part of every user:secret@ URL found in the text"""
    if not text:
        return text
    return _CREDENTIALS_RE.sub(
        lambda m: f"{m.group('scheme')}{m.group('user')}:{REDACTED}@", text
    )
