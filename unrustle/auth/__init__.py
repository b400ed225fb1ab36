"""
Authentication for the log-deletion opt-out site.

Design goals:
- Two hardcoded OAuth2 providers (Twitch, Destiny.gg), one code path.
- One-time state nonces held server-side with a fixed expiry.
- Stateless signed (JWT) session cookies, one per provider.
"""
