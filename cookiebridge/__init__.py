"""
CookieBridge
Copyright (c) 2025

LEGAL NOTICE AND THREAT MODEL:
This tool is for personal use only. It copies session cookies of domains the
device owner configured from the local browser into a local store encrypted
with a key bound to the local user, so command-line tools of the same user can
reuse the browser session. It protects against casual disk inspection, not
against code running as the same user.
"""
